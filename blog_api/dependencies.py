import logging
import secrets
from datetime import timedelta

from fastapi import Depends, Header, HTTPException, Query, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from blog_api.cache import cache
from blog_api.config import settings
from blog_api.database import get_db
from blog_api.models import User, UserRole
from blog_api.services import user_service
from blog_api.views import RedisViewTracker

logger = logging.getLogger(__name__)


class PaginationParams:
    """
    Reusable FastAPI dependency that parses and validates paging query
    parameters.

    Usage in a router::

        @router.get("/posts/published")
        async def list_published(pagination: PaginationParams = Depends()):
            ...

    Attributes
    ----------
    page:
        1-based page number (minimum 1).
    page_size:
        Number of items per page, clamped to ``settings.MAX_PAGE_SIZE``
        regardless of the value supplied by the caller.
    """

    def __init__(
        self,
        page: int = Query(1, ge=1, description="Page number (1-based)."),
        page_size: int = Query(
            settings.DEFAULT_PAGE_SIZE,
            ge=1,
            le=100,
            description="Number of items returned per page (max 100).",
        ),
    ) -> None:
        self.page = page
        self.page_size = min(page_size, settings.MAX_PAGE_SIZE)

    @property
    def offset(self) -> int:
        """SQL OFFSET value computed from the current page and page size."""
        return (self.page - 1) * self.page_size


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------
# Token verification happens upstream (gateway / auth service), which forwards
# the authenticated user id in ``X-User-Id``.  Here it is only resolved
# against the user table.

async def get_optional_user(
    x_user_id: int | None = Header(None),
    db: AsyncSession = Depends(get_db),
) -> User | None:
    if x_user_id is None:
        return None
    user = await user_service.find_user(db, x_user_id)
    if user is None:
        logger.warning("Rejected unknown or inactive user id %s", x_user_id)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        )
    return user


async def get_current_user(user: User | None = Depends(get_optional_user)) -> User:
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )
    return user


def require_roles(*roles: UserRole):
    """Dependency factory: the current user must hold one of *roles*."""

    async def _check(user: User = Depends(get_current_user)) -> User:
        if user.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient role for this operation",
            )
        return user

    return _check


require_admin = require_roles(UserRole.ADMIN)
require_author = require_roles(UserRole.AUTHOR, UserRole.ADMIN)


# ---------------------------------------------------------------------------
# Viewing session
# ---------------------------------------------------------------------------

def get_view_tracker(request: Request, response: Response) -> RedisViewTracker:
    """
    Bind a view tracker to the caller's viewing session, identified by the
    ``settings.SESSION_COOKIE_NAME`` cookie.  A new session id is issued
    when the cookie is missing.
    """
    session_id = request.cookies.get(settings.SESSION_COOKIE_NAME)
    if not session_id:
        session_id = secrets.token_urlsafe(16)
        response.set_cookie(
            settings.SESSION_COOKIE_NAME,
            session_id,
            httponly=True,
            samesite="lax",
        )
    return RedisViewTracker(
        cache,
        session_id,
        ttl=timedelta(minutes=settings.VIEW_THROTTLE_MINUTES),
    )
