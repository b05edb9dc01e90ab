from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from blog_api.database import get_db
from blog_api.dependencies import get_current_user, require_admin
from blog_api.models import User
from blog_api.schemas import CommentCreate, CommentReply, CommentResponse, CommentUpdate
from blog_api.services import comment_service

router = APIRouter(prefix="/api/v1/comments", tags=["comments"])


@router.get("/pending", response_model=list[CommentResponse])
async def list_pending_comments(
    _: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await comment_service.list_pending_comments(db)


@router.get("/post/{post_id}", response_model=list[CommentResponse])
async def list_comments_by_post(post_id: int, db: AsyncSession = Depends(get_db)):
    return await comment_service.list_comments_by_post(db, post_id)


@router.get("/user/{user_id}", response_model=list[CommentResponse])
async def list_comments_by_user(
    user_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    if user.id != user_id and not user.is_admin:
        raise HTTPException(status_code=403, detail="You can only list your own comments")
    return await comment_service.list_comments_by_user(db, user_id)


@router.get("/{comment_id}", response_model=CommentResponse)
async def get_comment(comment_id: int, db: AsyncSession = Depends(get_db)):
    return await comment_service.get_comment(db, comment_id)


@router.post("", status_code=201, response_model=CommentResponse)
async def create_comment(
    data: CommentCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await comment_service.create_comment(db, user.id, data)


@router.post("/{comment_id}/reply", status_code=201, response_model=CommentResponse)
async def reply_to_comment(
    comment_id: int,
    data: CommentReply,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await comment_service.reply_to_comment(db, comment_id, user.id, data)


@router.put("/{comment_id}", response_model=CommentResponse)
async def update_comment(
    comment_id: int,
    data: CommentUpdate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await comment_service.update_comment(db, comment_id, user.id, data)


@router.delete("/{comment_id}", status_code=204)
async def delete_comment(
    comment_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await comment_service.delete_comment(db, comment_id, user.id, is_admin=user.is_admin)


@router.put("/{comment_id}/approve", response_model=CommentResponse)
async def approve_comment(
    comment_id: int,
    _: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await comment_service.approve_comment(db, comment_id)


@router.put("/{comment_id}/reject", status_code=204)
async def reject_comment(
    comment_id: int,
    _: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    await comment_service.reject_comment(db, comment_id)
