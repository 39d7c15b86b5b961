"""
Subscription plan catalog
"""

from sqlmodel import Field, SQLModel
from datetime import datetime
from decimal import Decimal
from typing import Optional
import uuid

from trainhub.core.row_policies import GlobalTable, row_policy


@row_policy(GlobalTable())
class SubscriptionPlan(SQLModel, table=True):
    """Plan limits applied to tenants on registration or upgrade"""

    __tablename__ = "subscription_plans"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    code: str = Field(unique=True, index=True, max_length=50)
    name: str = Field(max_length=100)
    description: Optional[str] = None

    # Limits
    max_users: int = Field(default=10)
    max_courses: int = Field(default=50)
    max_students: int = Field(default=1000)

    price_monthly: Decimal = Field(default=Decimal("0"), max_digits=10, decimal_places=2)
    is_active: bool = Field(default=True)

    created_at: datetime = Field(default_factory=datetime.utcnow)
