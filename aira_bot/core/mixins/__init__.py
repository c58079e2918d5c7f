from .dispatch_mixin import DispatchMixin
from .scheduler_mixin import SchedulerMixin
from .stream_mixin import StreamMixin

__all__ = [
    "DispatchMixin",
    "SchedulerMixin",
    "StreamMixin",
]
