"""Progress reporting for generation jobs"""

from .reporter import ProgressReporter, ProgressSink, CallbackSink, TERMINAL_EVENT_TYPES
from .hub import ProgressHub
from .redis_sink import RedisProgressPublisher

__all__ = [
    'ProgressReporter',
    'ProgressSink',
    'CallbackSink',
    'ProgressHub',
    'RedisProgressPublisher',
    'TERMINAL_EVENT_TYPES'
]
