from collections.abc import Callable
from enum import Enum
from typing import Annotated

from fastapi import Depends, HTTPException, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from conductor.support.models import Actor
from conductor.support.notifications import Recipient


class Role(str, Enum):
    """Supported roles."""

    SUPERADMIN = "superadmin"
    SUPPORT = "support"
    USER = "user"


STAFF_ROLES: tuple[Role, ...] = (Role.SUPPORT, Role.SUPERADMIN)


class User:
    """Simple representation of an authenticated user."""

    def __init__(self, uuid: str, email: str, first_name: str, roles: tuple[Role, ...]):
        self.uuid = uuid
        self.email = email
        self.first_name = first_name
        self.roles = roles

    def has_role(self, role: Role) -> bool:
        return role in self.roles

    @property
    def is_staff(self) -> bool:
        return any(self.has_role(role) for role in STAFF_ROLES)

    def to_actor(self) -> Actor:
        return Actor(uuid=self.uuid, email=self.email, name=self.first_name, is_staff=self.is_staff)


TOKEN_USER_MAP: dict[str, User] = {
    "admin-token": User(
        "8f14e45f-ceea-4e7a-9d2c-3c59e3d1a001",
        "admin@libretexts.org",
        "Ada",
        (Role.SUPERADMIN, Role.SUPPORT, Role.USER),
    ),
    "support-token": User(
        "c9f0f895-fb98-4b91-8f2c-6b1f3d2e5002",
        "support@libretexts.org",
        "Sam",
        (Role.SUPPORT, Role.USER),
    ),
    "user-token": User(
        "45c48cce-2e2d-4fbd-a1e2-7c3b9d4f6003",
        "instructor@example.edu",
        "Ivy",
        (Role.USER,),
    ),
}

bearer_scheme = HTTPBearer(auto_error=False)


def resolve_user_from_token(token: str | None) -> User | None:
    """Return the user for a bearer token, ``None`` for anonymous callers."""

    if token is None:
        return None
    if token not in TOKEN_USER_MAP:
        raise HTTPException(status_code=401, detail="Invalid authentication credentials")
    return TOKEN_USER_MAP[token]


class StaticUserDirectory:
    """Resolve user UUIDs to mail recipients from the static token map."""

    def __init__(self, users: dict[str, User] | None = None) -> None:
        source = users if users is not None else TOKEN_USER_MAP
        self._by_uuid = {user.uuid: user for user in source.values()}

    def lookup(self, uuid: str) -> Recipient | None:
        user = self._by_uuid.get(uuid)
        if user is None:
            return None
        return Recipient(uuid=user.uuid, email=user.email, name=user.first_name)


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Security(bearer_scheme)],
    request: Request,
) -> User | None:
    """Very small authentication stub.

    Static tokens map to known users; a real deployment would verify the token
    against the identity service. Anonymous callers resolve to ``None`` so guest
    routes can fall back to ticket access keys.
    """

    cached = getattr(request.state, "user", None)
    if isinstance(cached, User):
        return cached

    token = credentials.credentials if credentials is not None else None
    user = resolve_user_from_token(token)
    request.state.user = user
    return user


def role_required(*roles: Role) -> Callable[[User | None], User]:
    """Dependency factory ensuring the current user holds at least one of ``roles``."""

    async def dependency(user: Annotated[User | None, Depends(get_current_user)]) -> User:
        if user is None:
            raise HTTPException(status_code=401, detail="Authentication required")
        if not any(user.has_role(role) for role in roles):
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return user

    return dependency


CurrentUser = Annotated[User | None, Depends(get_current_user)]
