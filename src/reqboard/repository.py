"""Entity repositories persisted as one versioned blob per collection.

Each repository owns a single storage key holding
``{"version": <schema version>, "state": {<collection>: [...], ...}}``.
The in-memory list is authoritative; every mutation rewrites the whole
blob and records whether that write succeeded in ``last_persist_ok``.
A blob written under another schema version, or one that fails
validation, is replaced by freshly seeded state on load.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, ClassVar, Generic, TypeVar

from pydantic import BaseModel, TypeAdapter, ValidationError

from .errors import EntityNotFound, StoredValueInvalid
from .models import (
    Attachment,
    Comment,
    HistoryRecord,
    Reply,
    Requirement,
    ReviewStatus,
    ScheduledReview,
    User,
    Version,
    dump_record,
)
from .review import DEFAULT_LEVEL_NAMES, ReviewPolicy, apply_level_decision, apply_level_opinion, default_review_levels
from .schedule import calculate_schedule, parse_release_date, validate_platform_name
from .settings import RuntimeSettings
from .storage import FileMedium, KeyValueStore, StorageMedium
from .utils import format_timestamp, generate_secure_id, next_sequential_id
from .validators import object_validator

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

NO_VERSION_LABEL = "暂无版本号"

_BLOB_VALIDATOR = object_validator(["version", "state"])


class EntityRepository(Generic[M]):
    """CRUD over one record type.

    Subclasses set ``model``, ``entity_name`` and ``collection`` and may
    override the ``_allocate_id``, ``_prepare_create``, ``_prepare_update``
    and ``_after_delete`` hooks. Extra collections kept in the same blob
    go through ``_dump_extra`` and ``_load_extra``.
    """

    model: ClassVar[type[BaseModel]]
    entity_name: ClassVar[str] = "record"
    collection: ClassVar[str] = "items"
    schema_version: ClassVar[int] = 1
    immutable_fields: ClassVar[frozenset[str]] = frozenset({"id", "created_at"})

    def __init__(
        self,
        store: KeyValueStore,
        key: str,
        *,
        seed: Callable[[], Sequence[M]] | None = None,
    ) -> None:
        self.store = store
        self.key = key
        self._seed = seed
        self._records: list[M] = []
        self._adapter = TypeAdapter(list[self.model])  # type: ignore[name-defined]
        self.last_persist_ok = True
        self.load()

    # -- loading and persisting -------------------------------------------

    def load(self) -> None:
        """(Re)read state from storage, reseeding when the blob is unusable."""
        blob = self.store.get(self.key, None, validator=_BLOB_VALIDATOR)
        if blob is None:
            self._reset()
            return

        if blob["version"] != self.schema_version:
            logger.info(
                "%s store %s has schema version %r, expected %d; reseeding",
                self.entity_name, self.key, blob["version"], self.schema_version,
            )
            self._reseed()
            return

        state = blob["state"]
        try:
            if not isinstance(state, dict):
                raise StoredValueInvalid("state must be an object")
            records = self._adapter.validate_python(state.get(self.collection, []))
            self._load_extra(state)
        except (ValidationError, StoredValueInvalid) as exc:
            logger.warning("%s store %s is invalid, reseeding: %s", self.entity_name, self.key, exc)
            self._reseed()
            return

        self._records = list(records)
        logger.debug("Loaded %d %s records from %s", len(self._records), self.entity_name, self.key)

    def _reset(self) -> None:
        self._records = list(self._seed()) if self._seed is not None else []
        self._load_extra({})

    def _reseed(self) -> None:
        self._reset()
        self._persist()

    def _persist(self) -> bool:
        blob = {
            "version": self.schema_version,
            "state": {
                self.collection: [dump_record(record) for record in self._records],
                **self._dump_extra(),
            },
        }
        self.last_persist_ok = self.store.set(self.key, blob)
        if not self.last_persist_ok:
            logger.error("Failed to persist %s store %s; keeping in-memory state", self.entity_name, self.key)
        return self.last_persist_ok

    def _dump_extra(self) -> dict[str, Any]:
        return {}

    def _load_extra(self, state: Mapping[str, Any]) -> None:
        return None

    # -- hooks ----------------------------------------------------------------

    def _allocate_id(self) -> str:
        return generate_secure_id()

    def _prepare_create(self, payload: dict[str, Any]) -> dict[str, Any]:
        return payload

    def _prepare_update(self, current: M, fields: Mapping[str, Any], merged: dict[str, Any]) -> dict[str, Any]:
        return merged

    def _after_delete(self, record: M) -> None:
        return None

    # -- public API -----------------------------------------------------------

    def list(self) -> list[M]:
        return list(self._records)

    def get(self, record_id: str) -> M | None:
        index = self._index_of(record_id)
        return None if index is None else self._records[index]

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, record_id: object) -> bool:
        return isinstance(record_id, str) and self._index_of(record_id) is not None

    def create(self, data: Mapping[str, Any]) -> M:
        """Validate and append a new record.

        ``id``, ``created_at`` and ``updated_at`` are assigned here and
        override anything in *data*.

        Raises:
            pydantic.ValidationError: If the resulting record is invalid.
        """
        now = format_timestamp()
        payload = {**data, "id": self._allocate_id(), "created_at": now, "updated_at": now}
        record = self.model.model_validate(self._prepare_create(payload))
        self._records.append(record)  # type: ignore[arg-type]
        self._persist()
        logger.info("Created %s %s", self.entity_name, payload["id"])
        return record  # type: ignore[return-value]

    def update(self, record_id: str, fields: Mapping[str, Any]) -> M:
        """Shallow-merge *fields* into an existing record.

        Raises:
            EntityNotFound: If *record_id* does not exist; nothing changes.
            ValueError: For unknown or immutable field names.
            pydantic.ValidationError: If the merged record is invalid.
        """
        index = self._index_of(record_id)
        if index is None:
            raise EntityNotFound(self.entity_name, record_id)

        unknown = sorted(set(fields) - set(self.model.model_fields))
        if unknown:
            raise ValueError(f"unknown {self.entity_name} fields: {', '.join(unknown)}")
        frozen = sorted(set(fields) & self.immutable_fields)
        if frozen:
            raise ValueError(f"immutable {self.entity_name} fields: {', '.join(frozen)}")

        current = self._records[index]
        merged = {**current.model_dump(), **fields}
        merged = self._prepare_update(current, fields, merged)
        merged["updated_at"] = format_timestamp()
        record = self.model.model_validate(merged)

        self._records[index] = record  # type: ignore[assignment]
        self._persist()
        logger.debug("Updated %s %s: %s", self.entity_name, record_id, ", ".join(sorted(fields)))
        return record  # type: ignore[return-value]

    def delete(self, record_id: str) -> None:
        """Remove a record; unknown ids are ignored."""
        index = self._index_of(record_id)
        if index is None:
            logger.debug("Delete of unknown %s %s ignored", self.entity_name, record_id)
            return
        record = self._records.pop(index)
        self._persist()
        logger.info("Deleted %s %s", self.entity_name, record_id)
        self._after_delete(record)

    def _index_of(self, record_id: str) -> int | None:
        for index, record in enumerate(self._records):
            if getattr(record, "id") == record_id:
                return index
        return None


# ---------------------------------------------------------------------------
# Comments and history
# ---------------------------------------------------------------------------

_HISTORY_ADAPTER = TypeAdapter(list[HistoryRecord])


class CommentRepository(EntityRepository[Comment]):
    """Comments with nested replies, plus the change history of requirements."""

    model = Comment
    entity_name = "comment"
    collection = "comments"

    def __init__(self, store: KeyValueStore, key: str = "comments-store", **kwargs: Any) -> None:
        self._history: list[HistoryRecord] = []
        super().__init__(store, key, **kwargs)

    def _dump_extra(self) -> dict[str, Any]:
        return {"history": [dump_record(record) for record in self._history]}

    def _load_extra(self, state: Mapping[str, Any]) -> None:
        self._history = list(_HISTORY_ADAPTER.validate_python(state.get("history", [])))

    def comments_for(self, requirement_id: str) -> list[Comment]:
        return [comment for comment in self._records if comment.requirement_id == requirement_id]

    def add_comment(
        self,
        requirement_id: str,
        content: str,
        author: User,
        attachments: Iterable[Attachment] = (),
    ) -> Comment:
        return self.create(
            {
                "requirement_id": requirement_id,
                "content": content,
                "author": author,
                "attachments": list(attachments),
            }
        )

    def add_reply(
        self,
        comment_id: str,
        content: str,
        author: User,
        attachments: Iterable[Attachment] = (),
    ) -> Reply:
        comment = self.get(comment_id)
        if comment is None:
            raise EntityNotFound(self.entity_name, comment_id)
        reply = Reply(
            id=generate_secure_id(),
            content=content,
            author=author,
            created_at=format_timestamp(),
            attachments=list(attachments),
        )
        self.update(comment_id, {"replies": [*comment.replies, reply]})
        return reply

    def delete_comment(self, comment_id: str) -> None:
        self.delete(comment_id)

    def delete_reply(self, comment_id: str, reply_id: str) -> None:
        comment = self.get(comment_id)
        if comment is None:
            raise EntityNotFound(self.entity_name, comment_id)
        remaining = [reply for reply in comment.replies if reply.id != reply_id]
        if len(remaining) != len(comment.replies):
            self.update(comment_id, {"replies": remaining})

    def history_for(self, requirement_id: str) -> list[HistoryRecord]:
        return [record for record in self._history if record.requirement_id == requirement_id]

    def add_history(
        self,
        requirement_id: str,
        action: str,
        field: str,
        old_value: str,
        new_value: str,
        user: User,
    ) -> HistoryRecord:
        now = format_timestamp()
        record = HistoryRecord(
            id=generate_secure_id(),
            requirement_id=requirement_id,
            action=action,
            field=field,
            old_value=old_value,
            new_value=new_value,
            user=user,
            created_at=now,
            updated_at=now,
        )
        self._history.append(record)
        self._persist()
        return record

    def delete_for_requirement(self, requirement_id: str) -> int:
        """Drop every comment and history record of a requirement.

        Returns:
            Number of records removed.
        """
        comments = [comment for comment in self._records if comment.requirement_id != requirement_id]
        history = [record for record in self._history if record.requirement_id != requirement_id]
        removed = (len(self._records) - len(comments)) + (len(self._history) - len(history))
        if removed:
            self._records = comments
            self._history = history
            self._persist()
            logger.info("Removed %d comment/history records of requirement %s", removed, requirement_id)
        return removed


# ---------------------------------------------------------------------------
# Requirements
# ---------------------------------------------------------------------------

class RequirementRepository(EntityRepository[Requirement]):
    model = Requirement
    entity_name = "requirement"
    collection = "requirements"

    def __init__(
        self,
        store: KeyValueStore,
        key: str = "requirements-store",
        *,
        comments: CommentRepository | None = None,
        review_level_names: Sequence[str] = DEFAULT_LEVEL_NAMES,
        review_policy: ReviewPolicy | None = None,
        **kwargs: Any,
    ) -> None:
        self.comments = comments
        self.review_level_names = tuple(review_level_names)
        self.review_policy = review_policy or ReviewPolicy()
        super().__init__(store, key, **kwargs)

    def _allocate_id(self) -> str:
        return next_sequential_id(record.id for record in self._records)

    def _prepare_create(self, payload: dict[str, Any]) -> dict[str, Any]:
        if "scheduled_review" not in payload:
            levels = default_review_levels(self.review_level_names, id_prefix=f"{payload['id']}-review-")
            payload["scheduled_review"] = ScheduledReview(review_levels=levels)
        return payload

    def _after_delete(self, record: Requirement) -> None:
        if self.comments is not None:
            self.comments.delete_for_requirement(record.id)

    def set_review_status(
        self,
        requirement_id: str,
        level: int,
        status: ReviewStatus | str,
        *,
        reviewer: User | None = None,
        opinion: str | None = None,
        policy: ReviewPolicy | None = None,
    ) -> Requirement:
        """Record a decision on one review level of a requirement.

        Raises:
            EntityNotFound: If the requirement does not exist.
            ReviewError: If the level is missing or the policy refuses it.
        """
        current = self.get(requirement_id)
        if current is None:
            raise EntityNotFound(self.entity_name, requirement_id)
        levels = apply_level_decision(
            current.scheduled_review.review_levels,
            level,
            ReviewStatus(status),
            reviewer=reviewer,
            opinion=opinion,
            policy=policy or self.review_policy,
        )
        updated = self.update(requirement_id, {"scheduled_review": ScheduledReview(review_levels=levels)})
        logger.info(
            "Requirement %s review level %d -> %s (overall: %s)",
            requirement_id, level, ReviewStatus(status).value, updated.overall_review_status,
        )
        return updated

    def set_review_opinion(self, requirement_id: str, level: int, opinion: str) -> Requirement:
        current = self.get(requirement_id)
        if current is None:
            raise EntityNotFound(self.entity_name, requirement_id)
        levels = apply_level_opinion(current.scheduled_review.review_levels, level, opinion)
        return self.update(requirement_id, {"scheduled_review": ScheduledReview(review_levels=levels)})


# ---------------------------------------------------------------------------
# Versions
# ---------------------------------------------------------------------------

class VersionRepository(EntityRepository[Version]):
    """Release versions with derived schedules, plus user-defined platforms."""

    model = Version
    entity_name = "version"
    collection = "versions"
    immutable_fields = frozenset({"id", "created_at", "schedule"})

    def __init__(self, store: KeyValueStore, key: str = "version-store", **kwargs: Any) -> None:
        self._custom_platforms: list[str] = []
        super().__init__(store, key, **kwargs)

    def _dump_extra(self) -> dict[str, Any]:
        return {"custom_platforms": list(self._custom_platforms)}

    def _load_extra(self, state: Mapping[str, Any]) -> None:
        platforms = state.get("custom_platforms", [])
        if not isinstance(platforms, list) or not all(isinstance(item, str) for item in platforms):
            raise StoredValueInvalid("custom_platforms must be a list of strings")
        self._custom_platforms = list(platforms)

    def _prepare_create(self, payload: dict[str, Any]) -> dict[str, Any]:
        if not payload.get("release_date"):
            raise ValueError("release_date is required")
        release = parse_release_date(payload["release_date"])
        payload["release_date"] = release
        payload["schedule"] = calculate_schedule(release)
        return payload

    def _prepare_update(
        self, current: Version, fields: Mapping[str, Any], merged: dict[str, Any]
    ) -> dict[str, Any]:
        if "release_date" in fields:
            release = parse_release_date(fields["release_date"])
            merged["release_date"] = release
            if release != current.release_date:
                merged["schedule"] = calculate_schedule(release)
        return merged

    @property
    def custom_platforms(self) -> list[str]:
        return list(self._custom_platforms)

    def add_custom_platform(self, platform: str) -> bool:
        """Add a platform name; returns False if it is already present.

        Raises:
            ValueError: If the name fails platform name validation.
        """
        result = validate_platform_name(platform)
        if not result.valid:
            raise ValueError(result.error)
        if result.value in self._custom_platforms:
            return False
        self._custom_platforms.append(result.value)
        self._persist()
        return True

    def delete_custom_platform(self, platform: str) -> bool:
        if platform not in self._custom_platforms:
            return False
        self._custom_platforms.remove(platform)
        self._persist()
        return True

    def version_numbers(self) -> list[str]:
        labels = sorted((version.label for version in self._records), reverse=True)
        return [NO_VERSION_LABEL, *labels]


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------

@dataclass
class Repositories:
    store: KeyValueStore
    requirements: RequirementRepository
    versions: VersionRepository
    comments: CommentRepository


def open_repositories(
    settings: RuntimeSettings,
    medium: StorageMedium | None = None,
    *,
    base: Path | None = None,
) -> Repositories:
    """Build the three repositories over one store, as configured by *settings*.

    Without an explicit *medium* a ``FileMedium`` rooted at
    ``settings.storage_path(base)`` is used.
    """
    store = KeyValueStore(medium if medium is not None else FileMedium(settings.storage_path(base)))
    comments = CommentRepository(store, settings.comments_key)
    requirements = RequirementRepository(
        store,
        settings.requirements_key,
        comments=comments,
        review_policy=ReviewPolicy(sequential=settings.review_sequential),
    )
    versions = VersionRepository(store, settings.versions_key)
    return Repositories(store=store, requirements=requirements, versions=versions, comments=comments)
