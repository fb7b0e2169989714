"""Export request validation and filter normalization.

Raw export requests arrive as loosely-typed JSON. They are validated at the
boundary into pydantic models (``ExportRequest`` / ``ExportFilters``) and then
normalized into a frozen ``FilterSet`` that the data collectors consume.
Date-range presets are resolved against the instant of normalization.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from ..utils.logging import get_logger
from .errors import PermissionDeniedError, ValidationError

logger = get_logger("export.filters")

ENTITY_TYPES = ("applications", "training", "employees", "courses")
EXPORT_FORMATS = ("excel", "csv", "pdf", "json")
JOB_STATUSES = ("pending", "processing", "completed", "failed")

ROLE_SUPER_ADMIN = "super_admin"
ROLE_ADMIN = "admin"

# Entity types each role may export; roles not listed may export nothing
ROLE_EXPORTABLE_TYPES = {
    ROLE_SUPER_ADMIN: frozenset(ENTITY_TYPES),
    ROLE_ADMIN: frozenset({"applications", "training", "courses"}),
}

DEFAULT_RANGE_DAYS = 30

ApplicationStatus = Literal["submitted", "under_review", "approved", "rejected", "cancelled"]
Priority = Literal["low", "medium", "high"]
CourseLevel = Literal["beginner", "intermediate", "advanced", "expert"]
EmployeeRole = Literal["admin", "applicant", "super_admin"]


def _is_custom(date_range: Optional[str]) -> bool:
    return bool(date_range) and date_range.strip().lower() == "custom"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------

class NumericRangeFilter(BaseModel):
    min: Optional[float] = Field(default=None, ge=0)
    max: Optional[float] = Field(default=None, ge=0)


class DateFieldSelection(BaseModel):
    applications: Literal["submitted_at", "reviewed_at", "created_at", "updated_at"] = "created_at"
    courses: Literal["created_at", "updated_at"] = "created_at"
    employees: Literal["created_at", "updated_at"] = "created_at"


class ExportFilters(BaseModel):
    """Filter object as submitted by clients (camelCase on the wire)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    date_range: Optional[str] = Field(default=None, alias="dateRange")
    start_date: Optional[str] = Field(default=None, alias="startDate")
    end_date: Optional[str] = Field(default=None, alias="endDate")

    # Applications
    application_status: list[ApplicationStatus] = Field(default_factory=list, alias="applicationStatus")
    application_priority: list[Priority] = Field(default_factory=list, alias="applicationPriority")
    applicant_department: list[str] = Field(default_factory=list, alias="applicantDepartment")
    applicant_sub_organization: list[str] = Field(default_factory=list, alias="applicantSubOrganization")
    course_categories: list[str] = Field(default_factory=list, alias="courseCategories")
    reviewed_by: list[str] = Field(default_factory=list, alias="reviewedBy")

    # Courses
    course_level: list[CourseLevel] = Field(default_factory=list, alias="courseLevel")
    course_format: list[str] = Field(default_factory=list, alias="courseFormat")
    course_category: list[str] = Field(default_factory=list, alias="courseCategory")
    course_ids: list[str] = Field(default_factory=list, alias="courseIds")
    price_range: Optional[NumericRangeFilter] = Field(default=None, alias="priceRange")
    course_active: Optional[bool] = Field(default=None, alias="courseActive")

    # Employees
    employee_department: list[str] = Field(default_factory=list, alias="employeeDepartment")
    employee_role: list[EmployeeRole] = Field(default_factory=list, alias="employeeRole")
    employee_sub_organization: list[str] = Field(default_factory=list, alias="employeeSubOrganization")
    experience_range: Optional[NumericRangeFilter] = Field(default=None, alias="experienceRange")
    job_title: list[str] = Field(default_factory=list, alias="jobTitle")
    manager_name: list[str] = Field(default_factory=list, alias="managerName")

    date_field: DateFieldSelection = Field(default_factory=DateFieldSelection, alias="dateField")

    text_search: Optional[str] = Field(default=None, alias="textSearch")
    exclude_inactive: bool = Field(default=False, alias="excludeInactive")
    include_deleted: bool = Field(default=False, alias="includeDeleted")

    # Legacy keys still sent by older clients
    organizations: list[str] = Field(default_factory=list)
    status: list[str] = Field(default_factory=list)

    limit: Optional[int] = Field(default=None, ge=1)
    offset: Optional[int] = Field(default=None, ge=0)

    @model_validator(mode="after")
    def check_consistency(self) -> "ExportFilters":
        if _is_custom(self.date_range) and not (self.start_date and self.end_date):
            raise ValueError("startDate and endDate are required when dateRange is 'custom'")
        for label, rng in (("Price", self.price_range), ("Experience", self.experience_range)):
            if rng is not None and rng.min is not None and rng.max is not None and rng.min > rng.max:
                raise ValueError(f"{label} range minimum must be less than or equal to maximum")
        return self


class DataTypeSelection(BaseModel):
    applications: bool = False
    training: bool = False
    employees: bool = False
    courses: bool = False

    def requested(self) -> list[str]:
        """Entity types switched on, in canonical order."""
        return [name for name in ENTITY_TYPES if getattr(self, name)]


class Scheduling(BaseModel):
    # Recurring types are stored but the processor runs every job exactly once
    type: Literal["one-time", "daily", "weekly", "monthly"] = "one-time"
    schedule: Optional[str] = None


class ExportRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    data_types: DataTypeSelection = Field(alias="dataTypes")
    filters: ExportFilters = Field(default_factory=ExportFilters)
    format: Literal["excel", "csv", "pdf", "json"]
    scheduling: Scheduling = Field(default_factory=Scheduling)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Export name is required")
        return v


# ---------------------------------------------------------------------------
# Canonical filter set
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DateRange:
    start: date
    end: date


@dataclass(frozen=True)
class NumericRange:
    min: Optional[float] = None
    max: Optional[float] = None


@dataclass(frozen=True)
class FilterSet:
    """Normalized, immutable export filters."""

    date_range: Optional[DateRange] = None
    date_field: str = "created_at"
    application_status: tuple[str, ...] = ()
    application_priority: tuple[str, ...] = ()
    applicant_department: tuple[str, ...] = ()
    applicant_sub_organization: tuple[str, ...] = ()
    course_categories: tuple[str, ...] = ()
    reviewed_by: tuple[str, ...] = ()
    course_ids: tuple[str, ...] = ()
    course_level: tuple[str, ...] = ()
    course_format: tuple[str, ...] = ()
    employee_department: tuple[str, ...] = ()
    employee_role: tuple[str, ...] = ()
    employee_sub_organization: tuple[str, ...] = ()
    job_title: tuple[str, ...] = ()
    manager_name: tuple[str, ...] = ()
    price_range: Optional[NumericRange] = None
    experience_range: Optional[NumericRange] = None
    course_active: Optional[bool] = None
    text_search: Optional[str] = None
    exclude_inactive: bool = False
    include_deleted: bool = False
    limit: Optional[int] = None
    offset: Optional[int] = None


# ---------------------------------------------------------------------------
# Date ranges
# ---------------------------------------------------------------------------

def _quarter_start(day: date) -> date:
    return date(day.year, ((day.month - 1) // 3) * 3 + 1, 1)


def _preset_range(key: str, today: date, now: datetime) -> Optional[DateRange]:
    """Resolve a hyphen-less, lower-cased preset name. None if unknown."""
    if key == "today":
        return DateRange(today, today)
    if key == "yesterday":
        yesterday = today - timedelta(days=1)
        return DateRange(yesterday, yesterday)
    if key in ("last7days", "last30days", "last90days"):
        days = int(key[len("last"):-len("days")])
        return DateRange((now - timedelta(days=days)).date(), today)
    if key == "thisweek":
        # Weeks start on Sunday
        return DateRange(today - timedelta(days=(today.weekday() + 1) % 7), today)
    if key in ("thismonth", "currentmonth"):
        return DateRange(today.replace(day=1), today)
    if key in ("thisyear", "currentyear"):
        return DateRange(date(today.year, 1, 1), today)
    if key == "lastyear":
        return DateRange(date(today.year - 1, 1, 1), date(today.year - 1, 12, 31))
    if key == "lastmonth":
        end = today.replace(day=1) - timedelta(days=1)
        return DateRange(end.replace(day=1), end)
    if key == "currentquarter":
        return DateRange(_quarter_start(today), today)
    if key == "lastquarter":
        end = _quarter_start(today) - timedelta(days=1)
        return DateRange(_quarter_start(end), end)
    return None


def _parse_date(value: str) -> date:
    text = value.strip()
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        return datetime.strptime(text, "%m/%d/%Y").date()


def default_date_range(now: datetime) -> DateRange:
    return DateRange((now - timedelta(days=DEFAULT_RANGE_DAYS)).date(), now.date())


def resolve_date_range(expression: str, now: Optional[datetime] = None) -> DateRange:
    """Turn a preset name or a literal date expression into a concrete range.

    Accepts the presets listed in ``_preset_range`` (hyphens optional), a
    ``"<date> to <date>"`` literal, or a single date. Anything unparseable
    falls back to the last 30 days instead of failing the export.
    """
    now = now or datetime.now(timezone.utc)
    today = now.date()
    key = expression.strip().lower().replace("-", "")

    if key == "custom":
        raise ValidationError("startDate and endDate are required when dateRange is 'custom'")

    preset = _preset_range(key, today, now)
    if preset is not None:
        return preset

    try:
        if " to " in expression:
            start_text, end_text = expression.split(" to ", 1)
            start, end = _parse_date(start_text), _parse_date(end_text)
        else:
            start = end = _parse_date(expression)
        if start > end:
            raise ValueError("start after end")
        return DateRange(start, end)
    except ValueError:
        logger.warning(
            "date_range_unparseable",
            value=expression,
            fallback=f"last-{DEFAULT_RANGE_DAYS}-days",
        )
        return default_date_range(now)


def _explicit_range(start_text: Optional[str], end_text: Optional[str], now: datetime) -> DateRange:
    if not (start_text and end_text):
        raise ValidationError("startDate and endDate are required when dateRange is 'custom'")
    try:
        start, end = _parse_date(start_text), _parse_date(end_text)
    except ValueError:
        logger.warning(
            "date_range_unparseable",
            value=f"{start_text} to {end_text}",
            fallback=f"last-{DEFAULT_RANGE_DAYS}-days",
        )
        return default_date_range(now)
    if start > end:
        raise ValidationError("startDate must be on or before endDate")
    return DateRange(start, end)


# ---------------------------------------------------------------------------
# Validation and normalization
# ---------------------------------------------------------------------------

def _format_pydantic_errors(exc: PydanticValidationError) -> str:
    parts = []
    for err in exc.errors():
        msg = err.get("msg", "invalid value")
        if msg.startswith("Value error, "):
            msg = msg[len("Value error, "):]
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "__root__")
        parts.append(f"{loc}: {msg}" if loc else msg)
    return "; ".join(parts)


def _merge(*groups: list[str]) -> tuple[str, ...]:
    merged: list[str] = []
    for group in groups:
        for item in group:
            if item not in merged:
                merged.append(item)
    return tuple(merged)


def _numeric(rng: Optional[NumericRangeFilter]) -> Optional[NumericRange]:
    if rng is None or (rng.min is None and rng.max is None):
        return None
    return NumericRange(rng.min, rng.max)


def normalize_filters(
    raw: dict | ExportFilters | None,
    now: Optional[datetime] = None,
    entity_type: str = "applications",
) -> FilterSet:
    """Validate a raw filter object and produce the canonical ``FilterSet``.

    Pure: performs no I/O. ``now`` anchors relative date presets.
    """
    now = now or datetime.now(timezone.utc)
    if isinstance(raw, ExportFilters):
        filters = raw
    else:
        try:
            filters = ExportFilters.model_validate(raw or {})
        except PydanticValidationError as exc:
            raise ValidationError(_format_pydantic_errors(exc)) from exc

    date_range = None
    if _is_custom(filters.date_range):
        date_range = _explicit_range(filters.start_date, filters.end_date, now)
    elif filters.date_range:
        date_range = resolve_date_range(filters.date_range, now)
    elif filters.start_date and filters.end_date:
        date_range = _explicit_range(filters.start_date, filters.end_date, now)

    text_search = filters.text_search.strip() if filters.text_search else None

    return FilterSet(
        date_range=date_range,
        date_field=getattr(filters.date_field, entity_type, "created_at"),
        application_status=_merge(filters.application_status, filters.status),
        application_priority=_merge(filters.application_priority),
        applicant_department=_merge(filters.applicant_department),
        applicant_sub_organization=_merge(filters.applicant_sub_organization, filters.organizations),
        course_categories=_merge(filters.course_categories, filters.course_category),
        reviewed_by=_merge(filters.reviewed_by),
        course_ids=_merge(filters.course_ids),
        course_level=_merge(filters.course_level),
        course_format=_merge(filters.course_format),
        employee_department=_merge(filters.employee_department),
        employee_role=_merge(filters.employee_role),
        employee_sub_organization=_merge(filters.employee_sub_organization),
        job_title=_merge(filters.job_title),
        manager_name=_merge(filters.manager_name),
        price_range=_numeric(filters.price_range),
        experience_range=_numeric(filters.experience_range),
        course_active=filters.course_active,
        text_search=text_search or None,
        exclude_inactive=filters.exclude_inactive,
        include_deleted=filters.include_deleted,
        limit=filters.limit,
        offset=filters.offset,
    )


def validate_data_types(data_types: DataTypeSelection | dict) -> list[str]:
    """Return the requested entity types; at least one must be selected."""
    if isinstance(data_types, dict):
        data_types = DataTypeSelection.model_validate(data_types)
    requested = data_types.requested()
    if not requested:
        raise ValidationError("At least one data type must be selected")
    return requested


def check_export_permission(role: str, data_types: DataTypeSelection | dict) -> None:
    """Raise ``PermissionDeniedError`` unless ``role`` may export every requested type."""
    requested = validate_data_types(data_types)
    allowed = ROLE_EXPORTABLE_TYPES.get(role)
    if not allowed:
        raise PermissionDeniedError("Insufficient permissions to export data")
    denied = [name for name in requested if name not in allowed]
    if denied:
        raise PermissionDeniedError(
            f"Insufficient permissions to export requested data types: {', '.join(denied)}"
        )


def validate_export_request(
    payload: dict, role: str, now: Optional[datetime] = None
) -> ExportRequest:
    """Validate a create-export payload for a caller with ``role``.

    Order: schema, data-type selection, role permission, filter dry run.
    Raises ``ValidationError`` or ``PermissionDeniedError``; nothing is
    persisted here.
    """
    try:
        request = ExportRequest.model_validate(payload)
    except PydanticValidationError as exc:
        raise ValidationError(_format_pydantic_errors(exc)) from exc

    validate_data_types(request.data_types)
    check_export_permission(role, request.data_types)
    normalize_filters(request.filters, now=now)
    return request
