import unittest
from datetime import timedelta

from sqlalchemy import select

from docdesk.checklists import apply_item_status, calculate_progress, is_complete, new_item
from docdesk.errors import BadRequestError, ConflictError, NotFoundError
from docdesk.models import ActivityLog, ChecklistStatus, ItemStatus

from support import NOW, DbTestCase


def _items(*statuses, required=True):
    items = []
    for idx, status in enumerate(statuses):
        item = new_item(f"Doc {idx}", required=required)
        item["status"] = status
        items.append(item)
    return items


class ProgressTests(unittest.TestCase):
    def test_empty_checklist_has_zero_progress(self):
        self.assertEqual(calculate_progress([]), (0, 0, 0.0))

    def test_progress_rounds_to_two_decimals(self):
        self.assertEqual(calculate_progress(_items("received", "received", "pending")), (3, 2, 66.67))
        self.assertEqual(calculate_progress(_items("received", "pending", "pending")), (3, 1, 33.33))
        self.assertEqual(calculate_progress(_items("received", *["pending"] * 5)), (6, 1, 16.67))
        self.assertEqual(calculate_progress(_items("received", *["pending"] * 7)), (8, 1, 12.5))

    def test_not_applicable_and_uploaded_count_as_received(self):
        total, received, progress = calculate_progress(
            _items("not_applicable", "uploaded", "verified", "rejected")
        )
        self.assertEqual((total, received, progress), (4, 3, 75.0))

    def test_complete_needs_every_item_satisfied(self):
        items = _items("received", "not_applicable")
        self.assertTrue(is_complete(items, calculate_progress(items)[2]))

        optional_pending = items + _items("pending", required=False)
        self.assertFalse(is_complete(optional_pending, calculate_progress(optional_pending)[2]))

    def test_received_date_only_set_when_entering_received(self):
        item = new_item("Form 16")
        received = apply_item_status(item, ItemStatus.RECEIVED, NOW)
        self.assertEqual(received["received_date"], NOW.isoformat())

        later = NOW + timedelta(days=2)
        verified = apply_item_status(received, ItemStatus.VERIFIED, later)
        self.assertEqual(verified["received_date"], NOW.isoformat())

        rejected = apply_item_status(item, ItemStatus.REJECTED, later)
        self.assertIsNone(rejected["received_date"])
        self.assertEqual(item["status"], "pending")


class ChecklistLifecycleTests(DbTestCase):
    def setUp(self):
        super().setUp()
        self.client_id = self.add_client("C001")
        self.template_id = self.add_template()

    def test_three_item_checklist_completes_on_last_receipt(self):
        chk = self.issue_checklist(
            self.client_id, self.template_id, due_date=(NOW + timedelta(days=10)).date()
        )
        self.assertEqual(chk.progress, 0)
        self.assertEqual(chk.status, ChecklistStatus.ACTIVE)
        self.assertEqual(chk.total_items, 3)

        ids = [i["id"] for i in chk.items]
        self.checklists.update_item_status(chk.id, ids[0], "received")
        chk = self.checklists.update_item_status(chk.id, ids[1], "received")
        self.assertEqual(chk.progress, 66.67)
        self.assertEqual(chk.received_items, 2)
        self.assertEqual(chk.status, ChecklistStatus.ACTIVE)
        self.assertIsNone(chk.completed_at)

        self.clock.advance(hours=1)
        chk = self.checklists.update_item_status(chk.id, ids[2], "received")
        self.assertEqual(chk.progress, 100)
        self.assertEqual(chk.status, ChecklistStatus.COMPLETED)
        self.assertEqual(chk.completed_at, NOW + timedelta(hours=1))

        stored = self.load_checklist(chk.id)
        self.assertEqual(stored.status, ChecklistStatus.COMPLETED)
        self.assertEqual(stored.received_items, 3)

    def test_completed_checklist_reopens_when_item_goes_back_to_pending(self):
        chk = self.issue_checklist(self.client_id, self.template_id)
        for item in chk.items:
            chk = self.checklists.update_item_status(chk.id, item["id"], "not_applicable")
        self.assertEqual(chk.status, ChecklistStatus.COMPLETED)

        chk = self.checklists.update_item_status(chk.id, chk.items[0]["id"], "pending")
        self.assertEqual(chk.status, ChecklistStatus.ACTIVE)
        self.assertIsNone(chk.completed_at)

    def test_adding_item_recomputes_progress(self):
        chk = self.issue_checklist(self.client_id, self.template_id)
        for item in chk.items:
            self.checklists.update_item_status(chk.id, item["id"], "received")

        chk = self.checklists.add_item(chk.id, label="  Rent receipts ", required=False)
        self.assertEqual(chk.total_items, 4)
        self.assertEqual(chk.progress, 75.0)
        self.assertEqual(chk.status, ChecklistStatus.ACTIVE)
        self.assertEqual(chk.items[-1]["label"], "Rent receipts")

        chk = self.checklists.remove_item(chk.id, chk.items[-1]["id"])
        self.assertEqual(chk.total_items, 3)
        self.assertEqual(chk.status, ChecklistStatus.COMPLETED)

    def test_add_item_requires_label(self):
        chk = self.issue_checklist(self.client_id, self.template_id)
        with self.assertRaises(BadRequestError):
            self.checklists.add_item(chk.id, label="   ")

    def test_remove_unknown_item_is_not_found(self):
        chk = self.issue_checklist(self.client_id, self.template_id)
        with self.assertRaises(NotFoundError):
            self.checklists.remove_item(chk.id, "missing")

    def test_update_unknown_item_is_not_found(self):
        chk = self.issue_checklist(self.client_id, self.template_id)
        with self.assertRaises(NotFoundError):
            self.checklists.update_item_status(chk.id, "missing", "received")

    def test_bulk_update_ignores_unknown_items(self):
        chk = self.issue_checklist(self.client_id, self.template_id)
        ids = [i["id"] for i in chk.items]
        chk = self.checklists.bulk_update_item_status(
            chk.id,
            [
                {"item_id": ids[0], "status": "received"},
                {"item_id": "nope", "status": "received"},
                {"item_id": ids[2], "status": "not_applicable"},
            ],
        )
        self.assertEqual(chk.received_items, 2)
        self.assertEqual(chk.progress, 66.67)
        self.assertEqual([i["status"] for i in chk.items], ["received", "pending", "not_applicable"])

    def test_review_rejection_and_verification(self):
        chk = self.issue_checklist(self.client_id, self.template_id)
        item_id = chk.items[0]["id"]

        with self.assertRaises(BadRequestError):
            self.checklists.review_item(chk.id, item_id, "verified")

        chk = self.checklists.review_item(chk.id, item_id, "rejected")
        self.assertEqual(chk.items[0]["rejection_reason"], "Please re-upload")

        self.checklists.update_item_status(chk.id, item_id, "received")
        chk = self.checklists.review_item(chk.id, item_id, "verified")
        self.assertEqual(chk.items[0]["status"], "verified")
        self.assertIsNone(chk.items[0]["rejection_reason"])
        self.assertEqual(chk.received_items, 1)

    def test_leaving_rejected_clears_rejection_reason(self):
        chk = self.issue_checklist(self.client_id, self.template_id)
        first, second = chk.items[0]["id"], chk.items[1]["id"]
        self.checklists.review_item(chk.id, first, "rejected", rejection_reason="Blurry scan")
        self.checklists.update_item_status(chk.id, second, "rejected", rejection_reason="Wrong year")

        self.checklists.update_item_status(chk.id, first, "received")
        chk = self.checklists.update_item_status(chk.id, second, "pending")
        self.assertIsNone(chk.items[0]["rejection_reason"])
        self.assertIsNone(chk.items[1]["rejection_reason"])

    def test_review_rejects_non_review_status(self):
        chk = self.issue_checklist(self.client_id, self.template_id)
        with self.assertRaises(BadRequestError):
            self.checklists.review_item(chk.id, chk.items[0]["id"], "received")

    def test_duplicate_issuance_conflicts_until_deleted(self):
        chk = self.issue_checklist(self.client_id, self.template_id)
        with self.assertRaises(ConflictError):
            self.issue_checklist(self.client_id, self.template_id)

        self.checklists.delete_checklist(chk.id, "admin-1")
        with self.assertRaises(NotFoundError):
            self.checklists.get_checklist(chk.id)
        again = self.issue_checklist(self.client_id, self.template_id)
        self.assertNotEqual(again.id, chk.id)

    def test_unknown_client_or_template(self):
        with self.assertRaises(NotFoundError):
            self.issue_checklist("missing", self.template_id)
        with self.assertRaises(NotFoundError):
            self.issue_checklist(self.client_id, "missing")

    def test_manual_completion_stamps_completed_at(self):
        chk = self.issue_checklist(self.client_id, self.template_id)
        chk = self.checklists.update_checklist(chk.id, {"status": "completed", "notes": "closed by phone"}, "admin-1")
        self.assertEqual(chk.status, ChecklistStatus.COMPLETED)
        self.assertEqual(chk.completed_at, NOW)
        self.assertEqual(chk.notes, "closed by phone")

        chk = self.checklists.update_checklist(chk.id, {"status": "archived"}, "admin-1")
        self.assertIsNone(chk.completed_at)

    def test_archived_checklist_is_not_auto_completed(self):
        chk = self.issue_checklist(self.client_id, self.template_id)
        self.checklists.update_checklist(chk.id, {"status": "archived"}, "admin-1")
        for item in chk.items:
            chk = self.checklists.update_item_status(chk.id, item["id"], "received")
        self.assertEqual(chk.status, ChecklistStatus.ARCHIVED)
        self.assertEqual(chk.progress, 100)

    def test_list_filters_and_paginates(self):
        other = self.add_client("C002")
        self.issue_checklist(self.client_id, self.template_id)
        self.issue_checklist(other, self.template_id)
        self.issue_checklist(other, self.template_id, financial_year="2023-24", name="ITR Basic - 2023-24")

        rows, total = self.checklists.list_checklists(client_id=other)
        self.assertEqual(total, 2)
        rows, total = self.checklists.list_checklists(financial_year="2023-24")
        self.assertEqual(total, 1)
        self.assertEqual(rows[0].client.code, "C002")
        rows, total = self.checklists.list_checklists(limit=2, page=2)
        self.assertEqual((len(rows), total), (1, 3))
        rows, total = self.checklists.list_checklists(search="2023")
        self.assertEqual(total, 1)

    def test_stats_and_pending_summary(self):
        chk = self.issue_checklist(self.client_id, self.template_id, due_date=(NOW - timedelta(days=2)).date())
        self.checklists.update_item_status(chk.id, chk.items[0]["id"], "received")

        stats = self.checklists.get_stats()
        self.assertEqual(stats["total"], 1)
        self.assertEqual(stats["active"], 1)
        self.assertEqual(stats["overdue"], 1)
        self.assertEqual(stats["avg_progress"], 33.33)

        summary = self.checklists.pending_documents_summary()
        self.assertEqual(len(summary), 1)
        self.assertEqual(summary[0]["pending_count"], 2)
        self.assertEqual(summary[0]["client_code"], "C001")

    def test_mutations_write_activity_log(self):
        chk = self.issue_checklist(self.client_id, self.template_id, ip="10.0.0.1")
        self.checklists.update_item_status(chk.id, chk.items[0]["id"], "received", user_id="admin-2")
        with self.session_factory() as db:
            actions = db.scalars(select(ActivityLog.action).order_by(ActivityLog.id)).all()
        self.assertEqual(actions, ["CHECKLIST_CREATED", "CHECKLIST_ITEM_UPDATED"])


if __name__ == "__main__":
    unittest.main()
