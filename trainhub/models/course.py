"""
Courses and scheduled course sessions
"""

from sqlmodel import Field, Relationship
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional
import uuid

from trainhub.core.row_policies import TenantColumn, row_policy
from trainhub.models.base import TenantScopedBase


class CourseStatus(str, Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class CourseSessionStatus(str, Enum):
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


@row_policy(TenantColumn())
class Course(TenantScopedBase, table=True):
    """Course model with tenant isolation"""

    __tablename__ = "courses"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)

    title: str = Field(index=True, max_length=255)
    description: Optional[str] = None
    duration_hours: int = Field(default=8)
    price: Decimal = Field(default=Decimal("0"), max_digits=10, decimal_places=2)
    status: CourseStatus = Field(default=CourseStatus.DRAFT, index=True)

    # Relationships
    sessions: List["CourseSession"] = Relationship(back_populates="course")


@row_policy(TenantColumn())
class CourseSession(TenantScopedBase, table=True):
    """Scheduled run of a course; carries its own tenant_id"""

    __tablename__ = "course_sessions"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    course_id: uuid.UUID = Field(foreign_key="courses.id", index=True)

    starts_at: datetime
    ends_at: datetime
    capacity: int = Field(default=20)
    status: CourseSessionStatus = Field(default=CourseSessionStatus.SCHEDULED)

    # Relationships
    course: Optional[Course] = Relationship(back_populates="sessions")
