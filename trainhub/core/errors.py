"""
Exception taxonomy for authentication, authorization and tenant isolation

Three families, each surfaced differently at the request boundary:

* ``Unauthenticated`` - no principal could be established (401).
* ``Forbidden`` - a principal exists but lacks the capability (403).
* ``TenantIsolationError`` - an isolation invariant was broken by server code.
  These are programming defects (500) and are never recovered in-request.
"""


class Unauthenticated(Exception):
    """Raised when no valid principal can be established for the request"""

    default_detail = "Could not validate credentials"

    def __init__(self, detail: str = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class InvalidCredential(Unauthenticated):
    """Malformed credential, bad signature or wrong credential type"""

    default_detail = "Invalid credential"


class ExpiredCredential(Unauthenticated):
    """Credential signature is valid but the credential has expired"""

    default_detail = "Credential has expired"


class PrincipalNotFound(Unauthenticated):
    """Credential references a user or tenant that no longer exists or is inactive"""

    default_detail = "Principal not found"


class Forbidden(Exception):
    """Raised when an authenticated principal lacks a required capability"""

    def __init__(self, detail: str = "Insufficient permissions"):
        self.detail = detail
        super().__init__(detail)


class ReservedPermissionError(Forbidden):
    """A tenant-scoped role may never hold a tenant-management permission"""


class TenantIsolationError(Exception):
    """Base class for isolation invariant violations"""


class MissingTenantId(TenantIsolationError):
    """Tenant-scoped entity is about to be persisted without a tenant id"""


class TenantMismatch(TenantIsolationError):
    """Tenant-scoped entity belongs to a different tenant than the bound context"""


class TenantReassignment(TenantIsolationError):
    """Tenant id of a persisted entity was changed"""


class TenantContextUnbound(TenantIsolationError):
    """Storage operation attempted on a session that was never bound"""


class TenantContextAlreadyBound(TenantIsolationError):
    """A request scope was bound to a second, different principal"""


class UnscopedStatement(TenantIsolationError):
    """Raw SQL issued through a policy-enforced session"""
