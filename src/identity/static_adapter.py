"""Token-table identity adapter for development and tests."""

from collections.abc import Mapping

from identity.port import AuthError, IdentityProvider, Principal


class StaticTokenIdentity(IdentityProvider):
    """Maps configured bearer tokens to principals.

    ``tokens`` maps a token to ``{"user_id": ..., "roles": [...], "vendor_id": ...}``.
    """

    def __init__(self, tokens: Mapping[str, Mapping] | None = None):
        self._principals: dict[str, Principal] = {}
        for token, entry in (tokens or {}).items():
            self.register(token, entry["user_id"], entry.get("roles", ()), entry.get("vendor_id"))

    def register(self, token: str, user_id: str, roles=(), vendor_id: str | None = None) -> Principal:
        principal = Principal(user_id=user_id, roles=frozenset(roles), vendor_id=vendor_id)
        self._principals[token] = principal
        return principal

    def verify_principal(self, credential: str) -> Principal:
        if not credential:
            raise AuthError("Missing bearer credential")
        principal = self._principals.get(credential)
        if principal is None:
            raise AuthError("Unknown bearer credential")
        return principal
