"""SQLAlchemy models package."""

from .base import Base
from .user import User, UserProfile
from .course import Course
from .application import Application
from .export_job import ExportJob

__all__ = [
    "Base",
    "User",
    "UserProfile",
    "Course",
    "Application",
    "ExportJob",
]
