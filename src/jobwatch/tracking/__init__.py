from .backoff import AttemptCounter, BackoffSchedule, next_delay
from .config import TrackingConfig
from .models import ErrorDetail, ErrorKind, JobRecord, JobSnapshot, JobUpdate
from .poll import PollWorker
from .push import PushChannel
from .registry import TrackerRegistry
from .states import JobKind, JobState, StatusNormalizer, normalize_state, status_label
from .tracker import JobTracker

__all__ = [
    "AttemptCounter",
    "BackoffSchedule",
    "ErrorDetail",
    "ErrorKind",
    "JobKind",
    "JobRecord",
    "JobSnapshot",
    "JobState",
    "JobTracker",
    "JobUpdate",
    "PollWorker",
    "PushChannel",
    "StatusNormalizer",
    "TrackerRegistry",
    "TrackingConfig",
    "next_delay",
    "normalize_state",
    "status_label",
]
