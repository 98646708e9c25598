from __future__ import annotations


class ReqboardError(Exception):
    """Base class for all reqboard errors."""


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------

class StorageError(ReqboardError):
    """A storage medium operation failed."""


class StorageUnavailable(StorageError):
    """The storage medium cannot be used at all."""


class ParseError(StorageError):
    """Stored text is not valid JSON."""


class StoredValueInvalid(StorageError):
    """Stored JSON parsed but does not have the expected shape."""


class QuotaExceeded(StorageError):
    """The medium refused a write because it is full."""


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------

class EntityNotFound(ReqboardError, LookupError):
    """An update targeted a record id that does not exist."""

    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(f"{entity} {entity_id} does not exist")
        self.entity = entity
        self.entity_id = entity_id


# ---------------------------------------------------------------------------
# Batch
# ---------------------------------------------------------------------------

class MutationError(ReqboardError):
    """A single batch item's operation failed."""

    def __init__(self, item_id: str, message: str) -> None:
        super().__init__(f"{item_id}: {message}")
        self.item_id = item_id
        self.message = message


class BatchRejected(ReqboardError):
    """A batch violated its size preconditions before any item ran."""


# ---------------------------------------------------------------------------
# Review workflow
# ---------------------------------------------------------------------------

class ReviewError(ReqboardError):
    """A review level mutation was refused."""


class ReviewLevelNotFound(ReviewError, LookupError):
    def __init__(self, level: int) -> None:
        super().__init__(f"review level {level} is not configured")
        self.level = level


class ReviewOrderViolation(ReviewError):
    def __init__(self, level: int, blocking_level: int) -> None:
        super().__init__(
            f"review level {level} cannot be decided before level {blocking_level} is approved"
        )
        self.level = level
        self.blocking_level = blocking_level


class InvalidReviewTransition(ReviewError):
    def __init__(self, level: int, current: str, requested: str) -> None:
        super().__init__(f"review level {level}: illegal transition {current} -> {requested}")
        self.level = level
        self.current = current
        self.requested = requested
