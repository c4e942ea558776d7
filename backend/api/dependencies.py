"""
API dependencies for authentication, team resolution and billing.
"""

import logging
from typing import Annotated

from fastapi import Depends, Header, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from adapters.payments.stripe_adapter import create_stripe_adapter
from core.domain.team import ResolvedTeam
from core.errors import PermissionDenied, Unauthenticated
from core.interfaces.services import BillingProvider
from core.security.tokens import TokenService
from infrastructure.config.settings import settings
from infrastructure.database.connection import get_db
from infrastructure.database.models.user import User
from services.permissions import ensure_permission
from services.team_resolver import TeamResolver

logger = logging.getLogger(__name__)

token_service = TokenService(
    secret_key=settings.jwt_secret_key,
    algorithm=settings.jwt_algorithm,
    access_token_expire_minutes=settings.jwt_access_token_expire_minutes,
)


def _deny_unauthenticated(request: Request, detail: str) -> Unauthenticated:
    logger.info(
        "Unauthenticated request to %s: %s",
        request.url.path,
        detail,
        extra={"denial_reason": "unauthenticated"},
    )
    return Unauthenticated(detail)


async def get_current_user(
    request: Request,
    authorization: Annotated[str | None, Header()] = None,
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    Dependency to get the current authenticated user.

    Verifies the bearer token issued by the identity service and loads the
    mirrored user row.
    """
    token = None
    if authorization and authorization.startswith("Bearer "):
        parts = authorization.split(" ", 1)
        token = parts[1].strip() if len(parts) > 1 else None

    if not token:
        raise _deny_unauthenticated(request, "Not authenticated")

    payload = token_service.verify_access_token(token)
    if not payload:
        raise _deny_unauthenticated(request, "Invalid or expired token")

    result = await db.execute(select(User).where(User.id == payload.sub))
    user = result.scalar_one_or_none()
    if user is None:
        raise _deny_unauthenticated(request, "User not found")
    if not user.is_active:
        raise PermissionDenied("User account is not active")

    return user


async def get_resolved_team(
    current_user: Annotated[User, Depends(get_current_user)],
    db: AsyncSession = Depends(get_db),
) -> ResolvedTeam:
    """The current user's team, provisioned on first use."""
    return await TeamResolver(db).resolve_team(current_user.id)


def require_permission(permission: str):
    """
    Dependency factory requiring a permission of the current user's team role.

    Usage:
        ```python
        @router.post("/portal")
        async def portal(team: ResolvedTeam = Depends(require_permission("can_manage_billing"))):
            ...
        ```
    """

    async def dependency(
        team: Annotated[ResolvedTeam, Depends(get_resolved_team)],
    ) -> ResolvedTeam:
        ensure_permission(team, permission)
        return team

    return dependency


def get_billing_provider() -> BillingProvider:
    """Billing provider client; overridden in tests."""
    return create_stripe_adapter()
