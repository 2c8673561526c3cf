"""Identity port: bearer credentials to principals.

Routes that act on behalf of a person (capture, refund, verification)
resolve the caller through this interface. Adapters are swapped via
configuration.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field


class AuthError(Exception):
    """The credential is missing, unknown or lacks the required role."""

    code = "unauthorized"

    def __init__(self, message: str, status_code: int = 401):
        self.status_code = status_code
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"code": self.code, "message": str(self)}


@dataclass(frozen=True)
class Principal:
    user_id: str
    roles: frozenset[str] = field(default_factory=frozenset)
    vendor_id: str | None = None


class IdentityProvider(ABC):
    """Abstract interface for identity adapters."""

    @abstractmethod
    def verify_principal(self, credential: str) -> Principal:
        """Resolve a bearer credential.

        Raises:
            AuthError: the credential is not recognised.
        """
        ...

    def has_role(self, principal: Principal, role: str, vendor_id: str | None = None) -> bool:
        if "admin" in principal.roles:
            return True
        if role not in principal.roles:
            return False
        return vendor_id is None or principal.vendor_id is None or principal.vendor_id == vendor_id
