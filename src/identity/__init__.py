"""Identity collaborator: bearer credential verification and role checks."""

from identity.port import AuthError, IdentityProvider, Principal
from identity.static_adapter import StaticTokenIdentity

__all__ = ["AuthError", "IdentityProvider", "Principal", "StaticTokenIdentity"]
