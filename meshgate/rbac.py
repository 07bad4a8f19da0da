"""Users, roles and permission checks for the admin API."""

from __future__ import annotations

import contextvars
import secrets
import threading
from collections.abc import Iterable, Mapping, MutableMapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

_USER_HEADER = "X-Admin-User"
_CREDENTIAL_HEADER = "X-Admin-Password"
_AUTHORIZATION_HEADER = "Authorization"
_FALLBACK_USERNAME = "admin"


class Role(str, Enum):
    """A named set of permissions."""

    SUPERADMIN = "superadmin"
    ADMIN = "admin"
    OPERATOR = "operator"
    VIEWER = "viewer"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class Permission:
    """Actions allowed on a resource; "*" matches anything."""

    resource: str
    actions: tuple[str, ...]


_DEFAULT_PERMISSIONS: dict[Role, tuple[Permission, ...]] = {
    Role.SUPERADMIN: (Permission("*", ("*",)),),
    Role.ADMIN: (
        Permission("nodes", ("*",)),
        Permission("keys", ("*",)),
        Permission("sessions", ("*",)),
        Permission("cooldowns", ("*",)),
        Permission("subnets", ("*",)),
        Permission("capacity", ("read", "write")),
        Permission("audit", ("read",)),
    ),
    Role.OPERATOR: (
        Permission("nodes", ("read", "write")),
        Permission("keys", ("read", "write")),
        Permission("sessions", ("read", "delete")),
        Permission("cooldowns", ("read",)),
        Permission("capacity", ("read",)),
    ),
    Role.VIEWER: (
        Permission("nodes", ("read",)),
        Permission("keys", ("read",)),
        Permission("capacity", ("read",)),
    ),
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class RBACConfig:
    """Account policy settings."""

    default_role: Role = Role.VIEWER
    min_password_len: int = 8
    max_login_attempts: int = 5
    lockout_duration: int = 15


@dataclass
class User:
    """An admin account. The password field holds the stored hash."""

    id: str = ""
    username: str = ""
    password: str = field(default_factory=str, repr=False)
    roles: list[Role] = field(default_factory=list)
    email: str = ""
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)
    last_login: datetime | None = None
    active: bool = True


class AccessDenied(Exception):
    """Raised when a request is not authenticated or not authorised."""

    def __init__(self, status: int, message: str) -> None:
        super().__init__(message)
        self.status = status
        self.message = message


def hash_password(password: str) -> str:
    """Obfuscate a password by XOR with 0x5A, hex encoded."""
    return bytes(b ^ 0x5A for b in password.encode("utf-8")).hex()


def verify_password(password: str, hashed: str) -> bool:
    """Whether password matches the stored hash."""
    return hash_password(password) == hashed


def _user_dict(user: User) -> dict[str, Any]:
    data: dict[str, Any] = {
        "id": user.id,
        "username": user.username,
        "roles": [str(role) for role in user.roles],
        "email": user.email,
        "created_at": user.created_at.isoformat(),
        "updated_at": user.updated_at.isoformat(),
        "active": user.active,
    }
    if user.last_login is not None:
        data["last_login"] = user.last_login.isoformat()
    return data


def _header(headers: Mapping[str, str], name: str) -> str:
    lowered = name.lower()
    for key, value in headers.items():
        if key.lower() == lowered:
            return value
    return ""


class RBACService:
    """Keeps admin users in memory and answers permission questions."""

    def __init__(self, config: RBACConfig | None = None) -> None:
        self.config = config if config is not None else RBACConfig()
        self._users: dict[str, User] = {}
        self._permissions: dict[Role, tuple[Permission, ...]] = dict(_DEFAULT_PERMISSIONS)
        self._lock = threading.RLock()

    def create_user(
        self,
        username: str,
        password: str,
        email: str = "",
        roles: Iterable[Role | str] | None = None,
    ) -> User:
        """Create an active user; roles default to the configured default role."""
        if not username or not password:
            raise ValueError("username and password required")
        if len(password) < self.config.min_password_len:
            raise ValueError(
                f"password must be at least {self.config.min_password_len} characters"
            )
        role_list = [Role(role) for role in roles] if roles else []
        if not role_list:
            role_list = [Role(self.config.default_role)]

        with self._lock:
            if username in self._users:
                raise ValueError("user already exists")
            now = _now()
            user = User(
                id=secrets.token_hex(16),
                username=username,
                password=hash_password(password),
                roles=role_list,
                email=email,
                created_at=now,
                updated_at=now,
                active=True,
            )
            self._users[username] = user
        return user

    def get_user(self, username: str) -> User:
        """Return the named user or raise LookupError."""
        with self._lock:
            user = self._users.get(username)
        if user is None:
            raise LookupError("user not found")
        return user

    def list_users(self) -> list[User]:
        """All users."""
        with self._lock:
            return list(self._users.values())

    def update_user_roles(self, username: str, roles: Iterable[Role | str]) -> None:
        """Replace a user's roles."""
        with self._lock:
            user = self.get_user(username)
            user.roles = [Role(role) for role in roles]
            user.updated_at = _now()

    def deactivate_user(self, username: str) -> None:
        """Disable a user's account."""
        with self._lock:
            user = self.get_user(username)
            user.active = False
            user.updated_at = _now()

    def authenticate(self, username: str, password: str) -> User:
        """Check credentials and record the login; raise AccessDenied on failure."""
        with self._lock:
            user = self._users.get(username)
        if user is None:
            raise AccessDenied(401, "invalid credentials")
        if not user.active:
            raise AccessDenied(401, "account deactivated")
        if not verify_password(password, user.password):
            raise AccessDenied(401, "invalid credentials")
        with self._lock:
            user.last_login = _now()
        return user

    def has_permission(self, user: User, resource: str, action: str) -> bool:
        """Whether any of the user's roles allows action on resource."""
        for role in user.roles:
            try:
                permissions = self._permissions[Role(role)]
            except (ValueError, KeyError):
                continue
            for permission in permissions:
                if permission.resource not in ("*", resource):
                    continue
                if "*" in permission.actions or action in permission.actions:
                    return True
        return False

    def require_permission(
        self, context: Mapping[str, Any], resource: str, action: str
    ) -> User:
        """Return the request's user if allowed, else raise AccessDenied."""
        if "rbac_user" not in context:
            raise AccessDenied(401, "Unauthorized")
        user = context["rbac_user"]
        if not isinstance(user, User):
            raise AccessDenied(401, "Invalid user context")
        if not self.has_permission(user, resource, action):
            raise AccessDenied(403, "Insufficient permissions")
        return user

    def to_dict(self) -> dict[str, Any]:
        """A JSON-ready view of the policy, users and known roles."""
        with self._lock:
            users = [_user_dict(user) for user in self._users.values()]
        return {
            "default_role": str(self.config.default_role),
            "min_password_len": self.config.min_password_len,
            "max_login_attempts": self.config.max_login_attempts,
            "lockout_duration_minutes": self.config.lockout_duration,
            "users": users,
            "roles": [str(role) for role in self._permissions],
        }


class RBACMiddleware:
    """Authenticates requests from their admin headers."""

    def __init__(self, service: RBACService) -> None:
        self.service = service

    def authenticate(
        self, headers: Mapping[str, str], context: MutableMapping[str, Any]
    ) -> User:
        """Authenticate from headers and store the user in context."""
        username = _header(headers, _USER_HEADER)
        credential = _header(headers, _CREDENTIAL_HEADER)
        if not username or not credential:
            authorization = _header(headers, _AUTHORIZATION_HEADER)
            if authorization:
                username = _FALLBACK_USERNAME
                credential = authorization
        if not username:
            raise AccessDenied(401, "Missing credentials")

        user = self.service.authenticate(username, credential)
        context["rbac_user"] = user
        context["rbac_username"] = user.username
        context["rbac_roles"] = user.roles
        return user


def get_rbac_user(context: Mapping[str, Any]) -> User | None:
    """The authenticated user stored in a request context, if any."""
    user = context.get("rbac_user")
    return user if isinstance(user, User) else None


def get_rbac_roles(context: Mapping[str, Any]) -> list[Role] | None:
    """The authenticated user's roles stored in a request context, if any."""
    roles = context.get("rbac_roles")
    return roles if isinstance(roles, list) else None


_current_service: contextvars.ContextVar[RBACService | None] = contextvars.ContextVar(
    "rbac_service", default=None
)


def bind_service(service: RBACService) -> contextvars.Token:
    """Make service the current one in this context; returns a reset token."""
    return _current_service.set(service)


def current_service() -> RBACService | None:
    """The service bound in the current context, if any."""
    return _current_service.get()