"""Core system components"""

from .state import Job, JobState, JobResult, ServiceBinding, TERMINAL_STATES
from .exceptions import GenerationError, TransientError, classify_backend_error

__all__ = [
    'Job',
    'JobState',
    'JobResult',
    'ServiceBinding',
    'TERMINAL_STATES',
    'GenerationError',
    'TransientError',
    'classify_backend_error'
]
