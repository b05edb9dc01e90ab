"""
User service: the identity store as the blog core sees it.

Accounts are resolved by id for authors, commenters and the acting user.
Self-registration through ``create_user`` always yields a reader; only an
admin can promote a user or deactivate an account.  Deactivated users stay
in the table, so their posts and comments keep an author, but
``find_user`` no longer resolves them as an identity.
"""
import logging

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from blog_api.errors import InvalidStateError, NotFoundError
from blog_api.models import Comment, Post, PostStatus, User, UserRole, utcnow
from blog_api.schemas import (
    UserCreate,
    UserDetail,
    UserResponse,
    UserRoleUpdate,
    UserStatistics,
    UserStatusUpdate,
)
from blog_api.services.taxonomy_service import flush_or_conflict

logger = logging.getLogger(__name__)


async def find_user(db: AsyncSession, user_id: int) -> User | None:
    """Return the active user with *user_id*, or None."""
    user = await db.get(User, user_id)
    if user is None or not user.is_active:
        return None
    return user


async def _get_user_or_404(db: AsyncSession, user_id: int) -> User:
    user = await db.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


async def _detail(db: AsyncSession, user: User) -> UserDetail:
    post_count = await db.scalar(
        select(func.count()).select_from(Post).where(Post.author_id == user.id)
    )
    comment_count = await db.scalar(
        select(func.count()).select_from(Comment).where(Comment.user_id == user.id)
    )
    return UserDetail.model_validate(user).model_copy(
        update={"post_count": post_count, "comment_count": comment_count}
    )


async def get_users(db: AsyncSession) -> list[UserResponse]:
    q = select(User).order_by(User.created_at.desc(), User.id.desc())
    result = await db.execute(q)
    return [UserResponse.model_validate(u) for u in result.scalars().all()]


async def get_user(db: AsyncSession, user_id: int) -> UserDetail:
    return await _detail(db, await _get_user_or_404(db, user_id))


async def get_user_by_username(db: AsyncSession, username: str) -> UserDetail:
    result = await db.execute(select(User).where(User.username == username))
    user = result.scalar_one_or_none()
    if user is None:
        raise NotFoundError("User not found")
    return await _detail(db, user)


async def create_user(
    db: AsyncSession, data: UserCreate, role: UserRole = UserRole.READER
) -> UserResponse:
    """
    Create a user.  The HTTP layer never passes *role*; it exists for
    bootstrap scripts.  Username and email uniqueness is enforced by the
    database; a violation becomes ``ConflictError``.
    """
    user = User(
        username=data.username,
        email=data.email,
        display_name=data.display_name,
        bio=data.bio,
        role=role,
    )
    db.add(user)
    await flush_or_conflict(db, "A user with this username or email already exists")
    return UserResponse.model_validate(user)


async def update_user_role(
    db: AsyncSession, user_id: int, data: UserRoleUpdate, actor: User
) -> UserDetail:
    """Change a user's role.  Admins cannot demote themselves."""
    user = await _get_user_or_404(db, user_id)
    if user.id == actor.id and data.role != user.role:
        raise InvalidStateError("You cannot change your own role")
    user.role = data.role
    user.updated_at = utcnow()
    await db.flush()
    logger.info("User %s role set to %s by %s", user.id, data.role.value, actor.id)
    return await _detail(db, user)


async def update_user_status(
    db: AsyncSession, user_id: int, data: UserStatusUpdate, actor: User
) -> UserDetail:
    """Activate or deactivate an account.  Admins cannot deactivate themselves."""
    user = await _get_user_or_404(db, user_id)
    if user.id == actor.id and not data.is_active:
        raise InvalidStateError("You cannot deactivate your own account")
    user.is_active = data.is_active
    user.updated_at = utcnow()
    await db.flush()
    logger.info("User %s active=%s set by %s", user.id, data.is_active, actor.id)
    return await _detail(db, user)


async def get_user_statistics(db: AsyncSession, user_id: int) -> UserStatistics:
    """Post counts by status and comment counts by approval for one user."""
    user = await _get_user_or_404(db, user_id)

    post_row = (
        await db.execute(
            select(
                func.count(Post.id),
                func.count(case((Post.status == PostStatus.PUBLISHED, 1))),
                func.count(case((Post.status == PostStatus.DRAFT, 1))),
            ).where(Post.author_id == user.id)
        )
    ).one()
    comment_row = (
        await db.execute(
            select(
                func.count(Comment.id),
                func.count(case((Comment.is_approved.is_(True), 1))),
                func.count(case((Comment.is_approved.is_(False), 1))),
            ).where(Comment.user_id == user.id)
        )
    ).one()

    return UserStatistics(
        total_posts=post_row[0],
        published_posts=post_row[1],
        draft_posts=post_row[2],
        total_comments=comment_row[0],
        approved_comments=comment_row[1],
        pending_comments=comment_row[2],
    )
