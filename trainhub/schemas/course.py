"""
Pydantic schemas for courses
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Optional
from datetime import datetime
from decimal import Decimal
import uuid

from trainhub.models.course import CourseStatus


class CourseCreate(BaseModel):
    """tenant_id is only accepted from principals that act across tenants"""
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    duration_hours: int = Field(default=8, ge=1)
    price: Decimal = Field(default=Decimal("0"), ge=0)
    status: CourseStatus = CourseStatus.DRAFT
    tenant_id: Optional[uuid.UUID] = None


class CourseResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    tenant_id: uuid.UUID
    title: str
    description: Optional[str]
    duration_hours: int
    price: Decimal
    status: CourseStatus
    created_at: datetime
