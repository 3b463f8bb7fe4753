from dataclasses import dataclass

from fastapi import Depends, Header, HTTPException, status

from ezjobs.config.settings import AuthMode, Settings, get_settings
from ezjobs.v1.core.exceptions import ForbiddenError

ADMIN_ROLES = frozenset({"admin", "owner"})


@dataclass
class Principal:
    """Represents the current authenticated user."""

    user_id: str
    org_id: str
    roles: list[str]
    email: str | None = None

    @property
    def is_admin(self) -> bool:
        return any(role in ADMIN_ROLES for role in self.roles)


def _parse_roles(raw: str | None, default: list[str]) -> list[str]:
    if not raw:
        return default
    return [role.strip() for role in raw.split(",") if role.strip()]


async def get_principal(
    x_user_id: str | None = Header(None, alias="X-User-ID"),
    x_org_id: str | None = Header(None, alias="X-Org-ID"),
    x_roles: str | None = Header(None, alias="X-Roles"),
    settings: Settings = Depends(get_settings),
) -> Principal:
    """
    Dependency injection function to get the current principal.

    Behavior based on AUTH_MODE:
    - none: Returns dev defaults with admin role
    - dev: Extract identity and roles from headers
    - oidc: Token verification lives in the gateway in front of this service
    """
    if settings.auth_mode == AuthMode.NONE:
        return Principal(
            user_id=settings.dev_user_id,
            org_id=settings.dev_org_id,
            roles=_parse_roles(x_roles, ["admin"]),
        )
    elif settings.auth_mode == AuthMode.DEV:
        if not x_user_id or not x_org_id:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="X-User-ID and X-Org-ID headers are required in dev auth mode",
            )

        return Principal(
            user_id=x_user_id,
            org_id=x_org_id,
            roles=_parse_roles(x_roles, ["member"]),
        )
    elif settings.auth_mode == AuthMode.OIDC:
        raise HTTPException(
            status_code=status.HTTP_501_NOT_IMPLEMENTED,
            detail="OIDC authentication is terminated upstream of this service",
        )
    else:
        raise ValueError(f"Unknown auth mode: {settings.auth_mode}")


async def require_admin(principal: Principal = Depends(get_principal)) -> Principal:
    """Allow only owners and admins through."""
    if not principal.is_admin:
        raise ForbiddenError(
            "Admin access required", details={"user_id": principal.user_id}
        )
    return principal


# Convenience type aliases for dependency injection
PrincipalDep = Depends(get_principal)
AdminDep = Depends(require_admin)
