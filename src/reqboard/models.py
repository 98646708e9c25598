from __future__ import annotations

from datetime import date
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ReviewStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class RequirementType(str, Enum):
    FEATURE = "新功能"
    OPTIMIZATION = "优化"
    BUG = "BUG"
    USER_FEEDBACK = "用户反馈"
    BUSINESS = "商务需求"


class RequirementStatus(str, Enum):
    PENDING_REVIEW = "待评审"
    IN_REVIEW = "评审中"
    REVIEW_PASSED = "评审通过"
    REVIEW_FAILED = "评审不通过"
    CLOSED = "已关闭"
    IN_DEVELOPMENT = "开发中"
    DONE = "已完成"
    IN_DESIGN = "设计中"


class Priority(str, Enum):
    LOW = "低"
    MEDIUM = "中"
    HIGH = "高"
    URGENT = "紧急"


class YesNo(str, Enum):
    YES = "是"
    NO = "否"


class _Record(BaseModel):
    model_config = ConfigDict(extra="forbid", validate_assignment=True)


class User(_Record):
    id: str
    name: str
    avatar: str = ""
    email: str = ""


class Project(_Record):
    id: str
    name: str
    color: str = ""


class Attachment(_Record):
    id: str
    name: str
    size: int = Field(ge=0)
    type: str = ""
    url: str = ""


# ---------------------------------------------------------------------------
# Review workflow
# ---------------------------------------------------------------------------

class ReviewLevel(_Record):
    id: str
    level: int = Field(ge=1)
    level_name: str
    status: ReviewStatus = ReviewStatus.PENDING
    reviewer: User | None = None
    reviewed_at: str | None = None
    opinion: str | None = None


class ScheduledReview(_Record):
    review_levels: list[ReviewLevel] = Field(default_factory=list)

    @field_validator("review_levels")
    @classmethod
    def _sorted_unique_levels(cls, levels: list[ReviewLevel]) -> list[ReviewLevel]:
        seen: set[int] = set()
        for item in levels:
            if item.level in seen:
                raise ValueError(f"duplicate review level {item.level}")
            seen.add(item.level)
        return sorted(levels, key=lambda item: item.level)


class EndOwnerOpinion(_Record):
    need_to_do: YesNo | None = None
    priority: Priority | None = None
    opinion: str | None = None
    owner: User | None = None


# ---------------------------------------------------------------------------
# Requirements
# ---------------------------------------------------------------------------

class Requirement(_Record):
    id: str
    title: str = Field(min_length=1)
    type: RequirementType = RequirementType.FEATURE
    status: RequirementStatus = RequirementStatus.PENDING_REVIEW
    priority: Priority | None = None
    creator: User | None = None
    project: Project | None = None
    description: str = ""
    tags: list[str] = Field(default_factory=list)
    platforms: list[str] = Field(default_factory=list)
    planned_version: str | None = None
    is_open: bool = True
    need_to_do: YesNo | None = None
    assignee: User | None = None
    attachments: list[Attachment] = Field(default_factory=list)
    end_owner_opinion: EndOwnerOpinion = Field(default_factory=EndOwnerOpinion)
    scheduled_review: ScheduledReview = Field(default_factory=ScheduledReview)
    delay_tag: str | None = None
    is_operational: bool | None = None
    created_at: str
    updated_at: str

    @property
    def overall_review_status(self) -> str:
        # Local import: review depends on models.
        from .review import derive_overall_status

        return derive_overall_status(self.scheduled_review.review_levels)


# ---------------------------------------------------------------------------
# Versions
# ---------------------------------------------------------------------------

class PhaseWindow(_Record):
    start: date
    end: date

    @property
    def workdays(self) -> int:
        """Number of Monday-Friday days in the inclusive window."""
        if self.end < self.start:
            return 0
        total = (self.end - self.start).days + 1
        full_weeks, remainder = divmod(total, 7)
        count = full_weeks * 5
        first_weekday = self.start.weekday()
        for offset in range(remainder):
            if (first_weekday + offset) % 7 < 5:
                count += 1
        return count


class VersionSchedule(_Record):
    prd: PhaseWindow
    prototype: PhaseWindow
    dev: PhaseWindow
    test: PhaseWindow

    def phases(self) -> list[tuple[str, PhaseWindow]]:
        return [("prd", self.prd), ("prototype", self.prototype), ("dev", self.dev), ("test", self.test)]


class Version(_Record):
    id: str
    platform: str = Field(min_length=1)
    version_number: str = Field(min_length=1)
    release_date: date
    schedule: VersionSchedule
    created_at: str
    updated_at: str

    @property
    def label(self) -> str:
        return f"{self.platform} {self.version_number}"


# ---------------------------------------------------------------------------
# Comments and history
# ---------------------------------------------------------------------------

class Reply(_Record):
    id: str
    content: str = Field(min_length=1)
    author: User
    created_at: str
    attachments: list[Attachment] = Field(default_factory=list)


class Comment(_Record):
    id: str
    requirement_id: str
    content: str = Field(min_length=1)
    author: User
    created_at: str
    updated_at: str
    attachments: list[Attachment] = Field(default_factory=list)
    replies: list[Reply] = Field(default_factory=list)


class HistoryRecord(_Record):
    id: str
    requirement_id: str
    action: str
    field: str
    old_value: str = ""
    new_value: str = ""
    user: User
    created_at: str
    updated_at: str


def dump_record(record: BaseModel) -> dict[str, Any]:
    """JSON-mode dict of a record, as it is persisted."""
    return record.model_dump(mode="json")
