"""Data collectors — fetch filtered records for each exportable entity type."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, time, timedelta
from typing import Any

from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from ..models.application import Application
from ..models.course import Course
from ..models.user import User, UserProfile
from ..utils.logging import get_logger
from .errors import CollectionError
from .filters import FilterSet

logger = get_logger("export.collectors")


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class DataCollector(ABC):
    """Fetches the records of one entity type that match a filter set."""

    entity_type: str = ""

    @abstractmethod
    async def collect(self, filters: FilterSet, session: AsyncSession) -> list[dict[str, Any]]:
        """Return matching records as flat dicts. Raises ``CollectionError``."""


class PlaceholderCollector(DataCollector):
    """Collector for entity types whose data source is not wired up yet.

    Always succeeds with no records so exports that request these types still
    complete.
    """

    def __init__(self, entity_type: str):
        self.entity_type = entity_type

    async def collect(self, filters: FilterSet, session: AsyncSession) -> list[dict[str, Any]]:
        logger.debug("placeholder_collector_used", entity_type=self.entity_type)
        return []


Applicant = aliased(UserProfile, name="applicant")
Reviewer = aliased(UserProfile, name="reviewer")


class ApplicationCollector(DataCollector):
    """Applications joined with applicant, applicant profile, course and reviewer."""

    entity_type = "applications"

    _DATE_COLUMNS = {
        "submitted_at": Application.submitted_at,
        "reviewed_at": Application.reviewed_at,
        "created_at": Application.created_at,
        "updated_at": Application.updated_at,
    }

    def _base_query(self):
        return (
            select(
                Application.id,
                Application.applicant_id,
                Application.course_id,
                Application.status,
                Application.priority,
                Application.submitted_at,
                Application.reviewed_at,
                Application.reviewed_by,
                Application.notes,
                Application.created_at,
                Application.updated_at,
                Applicant.full_name.label("applicant_name"),
                User.email.label("applicant_email"),
                Applicant.employee_id,
                Applicant.department,
                Applicant.sub_organization,
                Applicant.job_title,
                Applicant.experience_years,
                Applicant.manager_name,
                Applicant.manager_email,
                Course.title.label("course_title"),
                Course.category.label("course_category"),
                Course.level.label("course_level"),
                Course.format.label("course_format"),
                Course.duration.label("course_duration"),
                Course.price.label("course_price"),
                Course.is_active.label("course_is_active"),
                Course.is_tamkeen_support.label("course_is_tamkeen_support"),
                Reviewer.full_name.label("reviewer_name"),
            )
            .select_from(Application)
            .join(User, User.id == Application.applicant_id)
            .join(Applicant, Applicant.id == Application.applicant_id)
            .join(Course, Course.id == Application.course_id)
            .outerjoin(Reviewer, Reviewer.id == Application.reviewed_by)
        )

    def _conditions(self, filters: FilterSet) -> list:
        conditions = []
        date_column = self._DATE_COLUMNS.get(filters.date_field, Application.created_at)

        if filters.date_range is not None:
            start = datetime.combine(filters.date_range.start, time.min)
            end = datetime.combine(filters.date_range.end + timedelta(days=1), time.min)
            conditions.append(date_column >= start)
            conditions.append(date_column < end)

        if filters.application_status:
            conditions.append(Application.status.in_(filters.application_status))
        if filters.application_priority:
            conditions.append(Application.priority.in_(filters.application_priority))
        if filters.applicant_department:
            conditions.append(Applicant.department.in_(filters.applicant_department))
        if filters.applicant_sub_organization:
            conditions.append(Applicant.sub_organization.in_(filters.applicant_sub_organization))
        if filters.reviewed_by:
            conditions.append(Application.reviewed_by.in_(filters.reviewed_by))
        if filters.course_categories:
            conditions.append(Course.category.in_(filters.course_categories))
        if filters.course_ids:
            conditions.append(Application.course_id.in_(filters.course_ids))
        if filters.course_level:
            conditions.append(Course.level.in_(filters.course_level))
        if filters.course_format:
            conditions.append(Course.format.in_(filters.course_format))
        if filters.course_active is not None:
            conditions.append(Course.is_active == filters.course_active)

        if filters.price_range is not None:
            if filters.price_range.min is not None:
                conditions.append(Course.price >= filters.price_range.min)
            if filters.price_range.max is not None:
                conditions.append(Course.price <= filters.price_range.max)
        if filters.experience_range is not None:
            if filters.experience_range.min is not None:
                conditions.append(Applicant.experience_years >= filters.experience_range.min)
            if filters.experience_range.max is not None:
                conditions.append(Applicant.experience_years <= filters.experience_range.max)

        if filters.text_search:
            pattern = f"%{_escape_like(filters.text_search)}%"
            conditions.append(
                or_(
                    Applicant.full_name.ilike(pattern, escape="\\"),
                    Applicant.employee_id.ilike(pattern, escape="\\"),
                    Course.title.ilike(pattern, escape="\\"),
                    Course.category.ilike(pattern, escape="\\"),
                    Application.notes.ilike(pattern, escape="\\"),
                )
            )

        if filters.exclude_inactive:
            conditions.append(Course.is_active.is_(True))
        if not filters.include_deleted:
            conditions.append(Application.deleted_at.is_(None))

        return conditions

    def _filtered_query(self, filters: FilterSet):
        query = self._base_query()
        conditions = self._conditions(filters)
        if conditions:
            query = query.where(and_(*conditions))
        date_column = self._DATE_COLUMNS.get(filters.date_field, Application.created_at)
        return query.order_by(date_column.desc(), Application.id)

    async def collect(self, filters: FilterSet, session: AsyncSession) -> list[dict[str, Any]]:
        query = self._filtered_query(filters)
        if filters.limit is not None:
            query = query.limit(filters.limit)
        if filters.offset is not None:
            query = query.offset(filters.offset)

        try:
            result = await session.execute(query)
        except SQLAlchemyError as exc:
            raise CollectionError(
                f"Failed to collect applications: {exc}", entity_type=self.entity_type
            ) from exc
        return [dict(row) for row in result.mappings().all()]

    async def collect_page(
        self,
        filters: FilterSet,
        session: AsyncSession,
        page: int = 1,
        page_size: int = 50,
    ) -> tuple[list[dict[str, Any]], int]:
        """Paginated browsing variant. Returns ``(records, total)``."""
        page = max(page, 1)
        query = self._filtered_query(filters)
        count_query = select(func.count()).select_from(query.order_by(None).subquery())

        try:
            total = (await session.execute(count_query)).scalar() or 0
            result = await session.execute(
                query.limit(page_size).offset((page - 1) * page_size)
            )
        except SQLAlchemyError as exc:
            raise CollectionError(
                f"Failed to collect applications: {exc}", entity_type=self.entity_type
            ) from exc
        return [dict(row) for row in result.mappings().all()], total


def get_collectors() -> dict[str, DataCollector]:
    """Default entity type -> collector registry."""
    return {
        "applications": ApplicationCollector(),
        "training": PlaceholderCollector("training"),
        "employees": PlaceholderCollector("employees"),
        "courses": PlaceholderCollector("courses"),
    }
