"""
Comment service: threaded comments and their moderation.

Threading is a single ``parent_id`` link.  A parent must already exist and
belong to the same post, which rules out cycles without any tree walk.
Replies are created through ``reply_to_comment`` so they always inherit the
parent's post.

Moderation policy:

- new comments start approved when ``settings.COMMENTS_AUTO_APPROVE`` is
  on (the default), pending otherwise;
- editing a comment sends it back to pending;
- approve sets the flag, reject deletes the comment (there is no stored
  "rejected" state).

Who may moderate is decided by the HTTP layer; ownership checks for edit
and delete happen here because they depend on the stored author.
"""
import logging

from sqlalchemy import desc, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload

from blog_api.config import settings
from blog_api.errors import ConflictError, ForbiddenError, InvalidStateError, NotFoundError
from blog_api.models import Comment, Post, User, utcnow
from blog_api.schemas import CommentCreate, CommentReply, CommentResponse, CommentUpdate

logger = logging.getLogger(__name__)


async def _get_comment_or_404(
    db: AsyncSession, comment_id: int, message: str = "Comment not found"
) -> Comment:
    q = select(Comment).where(Comment.id == comment_id).options(joinedload(Comment.author))
    result = await db.execute(q)
    comment = result.unique().scalar_one_or_none()
    if comment is None:
        raise NotFoundError(message)
    return comment


async def _list(db: AsyncSession, *conditions) -> list[CommentResponse]:
    q = (
        select(Comment)
        .where(*conditions)
        .options(joinedload(Comment.author))
        .order_by(desc(Comment.created_at), desc(Comment.id))
    )
    result = await db.execute(q)
    return [CommentResponse.model_validate(c) for c in result.unique().scalars().all()]


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

async def get_comment(db: AsyncSession, comment_id: int) -> CommentResponse:
    return CommentResponse.model_validate(await _get_comment_or_404(db, comment_id))


async def list_comments_by_post(db: AsyncSession, post_id: int) -> list[CommentResponse]:
    """Every comment on *post_id*, newest first; replies carry ``parent_id``."""
    if await db.get(Post, post_id) is None:
        raise NotFoundError("Post not found")
    return await _list(db, Comment.post_id == post_id)


async def list_comments_by_user(db: AsyncSession, user_id: int) -> list[CommentResponse]:
    if await db.get(User, user_id) is None:
        raise NotFoundError("User not found")
    return await _list(db, Comment.user_id == user_id)


async def list_pending_comments(db: AsyncSession) -> list[CommentResponse]:
    return await _list(db, Comment.is_approved.is_(False))


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------

async def create_comment(db: AsyncSession, actor_id: int, data: CommentCreate) -> CommentResponse:
    """
    Add a comment by *actor_id* to ``data.post_id``.

    Raises NotFoundError for a missing author, post or parent,
    InvalidStateError when the post has comments disabled, and
    ConflictError when the parent sits on another post.
    """
    author = await db.get(User, actor_id)
    if author is None:
        raise NotFoundError("User not found")

    post = await db.get(Post, data.post_id)
    if post is None:
        raise NotFoundError("Post not found")
    if not post.allow_comments:
        raise InvalidStateError("Comments are not allowed for this post")

    if data.parent_id is not None:
        parent = await db.get(Comment, data.parent_id)
        if parent is None:
            raise NotFoundError("Parent comment not found")
        if parent.post_id != data.post_id:
            raise ConflictError("Parent comment does not belong to the specified post")

    comment = Comment(
        content=data.content,
        post_id=data.post_id,
        parent_id=data.parent_id,
        user_id=actor_id,
        is_approved=settings.COMMENTS_AUTO_APPROVE,
    )
    db.add(comment)
    await db.flush()
    comment.author = author
    logger.info(
        "User %s commented on post %s (comment=%s, parent=%s, approved=%s)",
        actor_id,
        data.post_id,
        comment.id,
        data.parent_id,
        comment.is_approved,
    )
    return CommentResponse.model_validate(comment)


async def reply_to_comment(
    db: AsyncSession, parent_id: int, actor_id: int, data: CommentReply
) -> CommentResponse:
    """Reply to *parent_id*; the reply always lands on the parent's post."""
    parent = await _get_comment_or_404(db, parent_id, "Parent comment not found")
    request = CommentCreate(post_id=parent.post_id, parent_id=parent.id, content=data.content)
    return await create_comment(db, actor_id, request)


async def update_comment(
    db: AsyncSession, comment_id: int, actor_id: int, data: CommentUpdate
) -> CommentResponse:
    """Replace the content of the actor's own comment and queue it for re-moderation."""
    comment = await _get_comment_or_404(db, comment_id)
    if comment.user_id != actor_id:
        raise ForbiddenError("You are not authorized to update this comment")

    comment.content = data.content
    comment.updated_at = utcnow()
    comment.is_approved = False
    await db.flush()
    return CommentResponse.model_validate(comment)


async def delete_comment(
    db: AsyncSession, comment_id: int, actor_id: int, is_admin: bool = False
) -> None:
    """Delete a comment (and, through the FK cascade, its replies)."""
    comment = await _get_comment_or_404(db, comment_id)
    if comment.user_id != actor_id and not is_admin:
        raise ForbiddenError("You are not authorized to delete this comment")

    await db.delete(comment)
    await db.flush()
    logger.info("Comment %s deleted by user %s", comment_id, actor_id)


async def approve_comment(db: AsyncSession, comment_id: int) -> CommentResponse:
    comment = await _get_comment_or_404(db, comment_id)
    comment.is_approved = True
    comment.updated_at = utcnow()
    await db.flush()
    logger.info("Comment %s approved", comment_id)
    return CommentResponse.model_validate(comment)


async def reject_comment(db: AsyncSession, comment_id: int) -> None:
    """Reject by deleting; rejected comments are not retained."""
    comment = await _get_comment_or_404(db, comment_id)
    await db.delete(comment)
    await db.flush()
    logger.info("Comment %s rejected and removed", comment_id)
