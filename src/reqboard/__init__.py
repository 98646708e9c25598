from importlib.metadata import version

from .batch import (
    BatchFailure,
    BatchOperationResult,
    BatchOptions,
    BatchOutcome,
    RetryPolicy,
    execute_batch,
    execute_batch_async,
    execute_batch_with_optimistic_update,
    execute_batch_with_optimistic_update_async,
)
from .errors import (
    BatchRejected,
    EntityNotFound,
    InvalidReviewTransition,
    MutationError,
    ReqboardError,
    ReviewError,
    ReviewLevelNotFound,
    ReviewOrderViolation,
    StorageError,
)
from .models import (
    Comment,
    HistoryRecord,
    PhaseWindow,
    Reply,
    Requirement,
    ReviewLevel,
    ReviewStatus,
    ScheduledReview,
    User,
    Version,
    VersionSchedule,
)
from .notifications import CollectingNotifier, LoggingNotifier, Notification, NotificationKind, Notifier
from .repository import (
    CommentRepository,
    EntityRepository,
    Repositories,
    RequirementRepository,
    VersionRepository,
    open_repositories,
)
from .review import ReviewPolicy, apply_level_decision, derive_overall_status, is_valid_status_transition
from .schedule import calculate_schedule, validate_platform_name, validate_version
from .settings import RuntimeSettings
from .storage import FileMedium, KeyValueStore, MemoryMedium, StorageMedium


def get_version() -> str:
    try:
        return version(__name__)
    except Exception:
        return "0.0.0"


__all__ = [
    "BatchFailure",
    "BatchOperationResult",
    "BatchOptions",
    "BatchOutcome",
    "BatchRejected",
    "CollectingNotifier",
    "Comment",
    "CommentRepository",
    "EntityNotFound",
    "EntityRepository",
    "FileMedium",
    "HistoryRecord",
    "InvalidReviewTransition",
    "KeyValueStore",
    "LoggingNotifier",
    "MemoryMedium",
    "MutationError",
    "Notification",
    "NotificationKind",
    "Notifier",
    "PhaseWindow",
    "Reply",
    "Repositories",
    "ReqboardError",
    "Requirement",
    "RequirementRepository",
    "RetryPolicy",
    "ReviewError",
    "ReviewLevel",
    "ReviewLevelNotFound",
    "ReviewOrderViolation",
    "ReviewPolicy",
    "ReviewStatus",
    "RuntimeSettings",
    "ScheduledReview",
    "StorageError",
    "StorageMedium",
    "User",
    "Version",
    "VersionRepository",
    "VersionSchedule",
    "apply_level_decision",
    "calculate_schedule",
    "derive_overall_status",
    "execute_batch",
    "execute_batch_async",
    "execute_batch_with_optimistic_update",
    "execute_batch_with_optimistic_update_async",
    "is_valid_status_transition",
    "open_repositories",
    "validate_platform_name",
    "validate_version",
]
