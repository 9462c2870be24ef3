from collections.abc import Callable
from enum import Enum
from typing import Annotated

from fastapi import Depends, HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer


class Role(str, Enum):
    """API roles granted to bearer tokens."""

    ADMIN = "admin"
    EDITOR = "editor"
    VIEWER = "viewer"


class Principal:
    """Authenticated caller, linked to a user directory entry when known."""

    def __init__(self, username: str, roles: tuple[Role, ...], user_id: str | None = None):
        self.username = username
        self.roles = roles
        self.user_id = user_id

    @property
    def actor(self) -> str:
        return self.user_id or self.username

    def has_role(self, role: Role) -> bool:
        return role in self.roles


bearer_scheme = HTTPBearer(auto_error=False)

_TOKENS: dict[str, tuple[str, tuple[Role, ...], str | None]] = {
    "admin-token": ("admin", (Role.ADMIN, Role.EDITOR, Role.VIEWER), "1"),
    "manager-token": ("manager", (Role.ADMIN, Role.EDITOR, Role.VIEWER), "2"),
    "editor-token": ("editor", (Role.EDITOR, Role.VIEWER), "3"),
    "viewer-token": ("viewer", (Role.VIEWER,), None),
}


async def get_current_principal(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Security(bearer_scheme)]
) -> Principal:
    """Map a static bearer token to a principal.

    Anonymous callers get read-only access. Token verification against an
    identity provider is out of scope for this service.
    """

    if credentials is None:
        return Principal(username="anonymous", roles=(Role.VIEWER,))

    if credentials.credentials not in _TOKENS:
        raise HTTPException(status_code=401, detail="Invalid authentication credentials")

    username, roles, user_id = _TOKENS[credentials.credentials]
    return Principal(username=username, roles=roles, user_id=user_id)


def role_required(role: Role) -> Callable[[Principal], Principal]:
    """Dependency factory ensuring the current principal has the requested role."""

    async def dependency(principal: Annotated[Principal, Depends(get_current_principal)]) -> Principal:
        if not principal.has_role(role):
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return principal

    return dependency


CurrentPrincipal = Annotated[Principal, Depends(get_current_principal)]
