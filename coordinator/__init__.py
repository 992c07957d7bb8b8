from .coordinator import Coordinator
from .events import EventBus
from .heartbeat import Heartbeat

__all__ = [
    "Coordinator",
    "EventBus",
    "Heartbeat",
]
