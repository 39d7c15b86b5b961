"""
Request-scoped principal
"""

from dataclasses import dataclass, field
from typing import FrozenSet, Optional
import uuid


@dataclass(frozen=True)
class Principal:
    """Resolved identity and authorization context for one request"""

    user_id: uuid.UUID
    tenant_id: Optional[uuid.UUID]
    email: str = ""
    roles: FrozenSet[str] = field(default_factory=frozenset)
    permissions: FrozenSet[str] = field(default_factory=frozenset)
    bypass_isolation: bool = False

    @property
    def is_system_user(self) -> bool:
        return self.tenant_id is None

    def has_role(self, role_code: str) -> bool:
        return role_code in self.roles
