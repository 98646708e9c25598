"""Release schedule derivation and version input checks.

Phases are anchored to calendar weeks counted back from the release
week, so weekends never fall inside the fixed-length phases:

* PRD: Monday-Wednesday, four weeks before release (3 workdays)
* prototype: Monday-Friday, three weeks before (5 workdays)
* dev: Monday two weeks before through Friday one week before (10 workdays)
* test: Monday of the release week through the release date
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any

from .models import PhaseWindow, VersionSchedule

PRD_WORKDAYS = 3
PROTOTYPE_WORKDAYS = 5
DEV_WORKDAYS = 10

_VERSION_NUMBER_RE = re.compile(r"^\d+\.\d+(\.\d+)?$")
_PLATFORM_NAME_RE = re.compile(r"^[一-龥a-zA-Z0-9_]+$")
PLATFORM_NAME_MAX_LENGTH = 20


def parse_release_date(value: date | datetime | str) -> date:
    """Accept a date, datetime, or ISO ``YYYY-MM-DD`` string.

    Raises:
        ValueError: If a string is not an ISO date.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = value.strip()
    try:
        return date.fromisoformat(text[:10])
    except ValueError as exc:
        raise ValueError(f"release date must be an ISO date (YYYY-MM-DD), got: {value!r}") from exc


def week_monday(day: date) -> date:
    """Monday of the week containing *day*; a Sunday maps to the Monday before it."""
    return day - timedelta(days=day.weekday())


def calculate_schedule(release_date: date | datetime | str) -> VersionSchedule:
    """Derive the four phase windows preceding *release_date*."""
    release = parse_release_date(release_date)
    release_monday = week_monday(release)

    prd_start = release_monday - timedelta(weeks=4)
    prototype_start = release_monday - timedelta(weeks=3)
    dev_start = release_monday - timedelta(weeks=2)
    dev_end = release_monday - timedelta(weeks=1) + timedelta(days=4)

    return VersionSchedule(
        prd=PhaseWindow(start=prd_start, end=prd_start + timedelta(days=PRD_WORKDAYS - 1)),
        prototype=PhaseWindow(start=prototype_start, end=prototype_start + timedelta(days=PROTOTYPE_WORKDAYS - 1)),
        dev=PhaseWindow(start=dev_start, end=dev_end),
        test=PhaseWindow(start=release_monday, end=release),
    )


# ---------------------------------------------------------------------------
# Version input checks
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    error: str | None = None
    value: Any = None


def validate_version(fields: dict[str, Any], *, today: date | None = None) -> ValidationResult:
    """Check user input for a new or edited version.

    Platform and version number must be non-empty, the version number
    must look like ``x.y`` or ``x.y.z``, and the release date must be a
    valid date not earlier than *today*.
    """
    platform = str(fields.get("platform") or "").strip()
    if not platform:
        return ValidationResult(valid=False, error="应用端不能为空")

    version_number = str(fields.get("version_number") or "").strip()
    if not version_number:
        return ValidationResult(valid=False, error="版本号不能为空")
    if not _VERSION_NUMBER_RE.match(version_number):
        return ValidationResult(valid=False, error="版本号格式不正确，请使用 x.y.z 格式（如：1.0.0）")

    raw_release = fields.get("release_date")
    if not raw_release:
        return ValidationResult(valid=False, error="上线时间不能为空")
    try:
        release = parse_release_date(raw_release)
    except (TypeError, ValueError):
        return ValidationResult(valid=False, error="上线时间格式不正确")

    if release < (today if today is not None else date.today()):
        return ValidationResult(valid=False, error="上线时间不能早于今天")

    return ValidationResult(
        valid=True,
        value={**fields, "platform": platform, "version_number": version_number, "release_date": release},
    )


def validate_platform_name(platform: str) -> ValidationResult:
    name = (platform or "").strip()
    if not name:
        return ValidationResult(valid=False, error="平台名称不能为空")
    if len(name) > PLATFORM_NAME_MAX_LENGTH:
        return ValidationResult(valid=False, error=f"平台名称不能超过{PLATFORM_NAME_MAX_LENGTH}个字符")
    if not _PLATFORM_NAME_RE.match(name):
        return ValidationResult(valid=False, error="平台名称只能包含中文、英文、数字和下划线")
    return ValidationResult(valid=True, value=name)
