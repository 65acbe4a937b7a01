import dramatiq
from dramatiq.brokers.redis import RedisBroker

from .config import get_settings

_broker = RedisBroker(url=get_settings().redis_url)
dramatiq.set_broker(_broker)

__all__ = ["_broker"]
