"""
Course API endpoints
"""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlmodel import Session, select
from typing import List
from datetime import datetime
import structlog
import uuid

from trainhub.core.dependencies import get_tenant_session, require_permissions
from trainhub.core.errors import Forbidden
from trainhub.core.permissions import Permission
from trainhub.core.principal import Principal
from trainhub.models.course import Course
from trainhub.schemas.course import CourseCreate, CourseResponse

logger = structlog.get_logger(__name__)
router = APIRouter()


@router.get("/", response_model=List[CourseResponse])
def list_courses(
    skip: int = 0,
    limit: int = 100,
    principal: Principal = Depends(require_permissions(Permission.COURSES_VIEW)),
    session: Session = Depends(get_tenant_session),
):
    """List courses visible to the current tenant"""
    return session.exec(
        select(Course).order_by(Course.created_at).offset(skip).limit(limit)
    ).all()


@router.post("/", response_model=CourseResponse, status_code=status.HTTP_201_CREATED)
def create_course(
    payload: CourseCreate,
    principal: Principal = Depends(require_permissions(Permission.COURSES_CREATE)),
    session: Session = Depends(get_tenant_session),
):
    """Create a course in the caller's tenant"""
    if principal.bypass_isolation:
        if payload.tenant_id is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="tenant_id is required when acting across tenants"
            )
        tenant_id = payload.tenant_id
    else:
        if payload.tenant_id is not None and payload.tenant_id != principal.tenant_id:
            raise Forbidden("Courses can only be created in your own tenant")
        tenant_id = principal.tenant_id

    course = Course(tenant_id=tenant_id, **payload.model_dump(exclude={"tenant_id"}))
    session.add(course)
    session.commit()
    session.refresh(course)
    logger.info("Course created", course_id=str(course.id))
    return course


@router.get("/{course_id}", response_model=CourseResponse)
def get_course(
    course_id: uuid.UUID,
    principal: Principal = Depends(require_permissions(Permission.COURSES_VIEW)),
    session: Session = Depends(get_tenant_session),
):
    """Get course by ID; courses of other tenants are reported as not found"""
    course = session.get(Course, course_id)
    if not course:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Course not found"
        )
    return course


@router.delete("/{course_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_course(
    course_id: uuid.UUID,
    principal: Principal = Depends(require_permissions(Permission.COURSES_DELETE)),
    session: Session = Depends(get_tenant_session),
):
    """Soft-delete a course"""
    course = session.get(Course, course_id)
    if not course:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Course not found"
        )
    course.deleted_at = datetime.utcnow()
    session.add(course)
    session.commit()
    logger.info("Course deleted", course_id=str(course_id))
