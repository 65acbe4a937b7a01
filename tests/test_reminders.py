import unittest
from datetime import date, datetime, timedelta

from sqlalchemy import select

from docdesk.errors import BadRequestError
from docdesk.models import ActivityLog, Checklist, Client
from docdesk.reminders import ReminderService, build_reminder_message, days_until_due, should_remind

from support import NOW, DbTestCase, FakeNotifier


class CadenceTests(unittest.TestCase):
    def test_should_remind_table(self):
        expected = {7, 3, 0, -3, -7, -14, -21, -28}
        for days in range(-30, 11):
            with self.subTest(days=days):
                self.assertEqual(should_remind(days), days in expected)

    def test_days_until_due_rounds_up(self):
        now = datetime(2025, 3, 1, 10, 0)
        self.assertEqual(days_until_due(date(2025, 3, 8), now), 7)
        self.assertEqual(days_until_due(date(2025, 3, 1), now), 0)
        self.assertEqual(days_until_due(date(2025, 2, 26), now), -3)
        self.assertEqual(days_until_due(date(2025, 3, 2), datetime(2025, 3, 1, 0, 0)), 1)
        self.assertEqual(days_until_due(date(2025, 3, 1), datetime(2025, 3, 1, 0, 0)), 0)


class ReminderMessageTests(unittest.TestCase):
    def setUp(self):
        self.client = Client(id="c1", code="C001", name="Asha Traders", mobile="+919000000001")
        self.items = [{"label": "Form 16"}, {"label": "PAN Card"}]

    def _message(self, days, due=date(2025, 3, 8)):
        chk = Checklist(id="k1", name="ITR Basic - 2024-25", due_date=due, items=[])
        return build_reminder_message(chk, self.client, self.items, days)

    def test_urgency_tiers(self):
        self.assertIn("Friendly reminder: 7 days left", self._message(7))
        self.assertIn("*Urgent:* only 3 days left", self._message(3))
        self.assertIn("only 1 day left", self._message(1))
        self.assertIn("*Due Today!*", self._message(0))
        self.assertIn("*Overdue by 3 days!*", self._message(-3))
        self.assertIn("*Overdue by 1 day!*", self._message(-1))

    def test_lists_pending_items_and_due_date(self):
        text = self._message(7)
        self.assertIn("Dear *Asha Traders*", text)
        self.assertIn("1. Form 16\n2. PAN Card", text)
        self.assertIn("*Due Date:* 8 Mar 2025", text)


class ReminderRunTests(DbTestCase):
    def setUp(self):
        super().setUp()
        self.template_id = self.add_template()
        self.notifier = FakeNotifier(fail_for={"+91 90000 00004"})
        self.sleeps = []
        self.reminders = ReminderService(
            self.session_factory,
            self.notifier,
            batch_size=1,
            batch_delay=2.0,
            clock=self.clock,
            sleep=self.sleeps.append,
        )

    def _checklist_due_in(self, code, days, mobile="+91 90000 00001"):
        client_id = self.add_client(code, mobile=mobile)
        due = None if days is None else (NOW + timedelta(days=days)).date()
        return self.issue_checklist(client_id, self.template_id, due_date=due)

    def test_run_counts_sent_errors_and_skipped(self):
        self._checklist_due_in("A", 7)
        self._checklist_due_in("B", 5)
        self._checklist_due_in("C", None)
        done = self._checklist_due_in("D", 3)
        for item in done.items:
            self.checklists.update_item_status(done.id, item["id"], "received")
        self._checklist_due_in("E", -3, mobile="+91 90000 00004")
        self._checklist_due_in("F", 0, mobile=None)
        self._checklist_due_in("G", -14, mobile="+91 90000 00007")

        result = self.reminders.run_reminder_check()

        self.assertEqual(result, {"sent": 2, "errors": 1, "skipped": 3})
        recipients = sorted(r for r, _ in self.notifier.sent)
        self.assertEqual(recipients, ["+91 90000 00001", "+91 90000 00007"])
        self.assertEqual(self.sleeps, [2.0, 2.0])

    def test_off_cadence_checklist_counts_as_skipped(self):
        self._checklist_due_in("A", 5)
        self.assertEqual(self.reminders.run_reminder_check(), {"sent": 0, "errors": 0, "skipped": 1})
        self.assertEqual(self.notifier.sent, [])

    def test_only_pending_items_are_listed(self):
        chk = self._checklist_due_in("A", 3)
        self.checklists.update_item_status(chk.id, chk.items[0]["id"], "received")
        self.checklists.update_item_status(chk.id, chk.items[1]["id"], "rejected")

        self.reminders.run_reminder_check()
        text = self.notifier.sent[0][1]
        self.assertIn("1. PAN Card", text)
        self.assertNotIn("Form 16", text)
        self.assertNotIn("Bank Statement", text)

    def test_same_day_reruns_select_the_same_checklists(self):
        self._checklist_due_in("A", 7)
        first = self.reminders.run_reminder_check()
        second = self.reminders.run_reminder_check()
        self.assertEqual(first, second)

        self.clock.advance(days=1)
        self.assertEqual(self.reminders.run_reminder_check()["sent"], 0)

    def test_manual_reminder(self):
        chk = self._checklist_due_in("A", 20)
        result = self.reminders.send_manual_reminder(chk.id, "admin-1")
        self.assertEqual(result, {"sent": True, "pending_count": 3})
        self.assertIn("Friendly reminder: 20 days left", self.notifier.sent[0][1])
        with self.session_factory() as db:
            self.assertIsNotNone(
                db.scalar(select(ActivityLog).where(ActivityLog.action == "CHECKLIST_REMINDER_SENT"))
            )

    def test_manual_reminder_needs_pending_items_and_mobile(self):
        no_mobile = self._checklist_due_in("A", 3, mobile=None)
        with self.assertRaises(BadRequestError):
            self.reminders.send_manual_reminder(no_mobile.id)

        done = self._checklist_due_in("B", 3)
        self.checklists.bulk_update_item_status(
            done.id, [{"item_id": i["id"], "status": "not_applicable"} for i in done.items]
        )
        with self.assertRaises(BadRequestError):
            self.reminders.send_manual_reminder(done.id)


if __name__ == "__main__":
    unittest.main()
