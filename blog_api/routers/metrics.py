from fastapi import APIRouter, Depends
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from blog_api.cache import cache
from blog_api.database import get_db
from blog_api.models import Category, Comment, Post, PostStatus, Tag, User
from blog_api.schemas import MetricsResponse

router = APIRouter(prefix="/api/v1/metrics", tags=["metrics"])


async def _count(db: AsyncSession, model, *conditions) -> int:
    q = select(func.count()).select_from(model).where(*conditions)
    return (await db.execute(q)).scalar_one()


@router.get("", response_model=MetricsResponse)
async def get_metrics(db: AsyncSession = Depends(get_db)):
    total_posts = await _count(db, Post)
    total_comments = await _count(db, Comment)
    avg_comments = total_comments / total_posts if total_posts > 0 else 0

    return MetricsResponse(
        total_posts=total_posts,
        published_posts=await _count(db, Post, Post.status == PostStatus.PUBLISHED),
        total_comments=total_comments,
        pending_comments=await _count(db, Comment, Comment.is_approved.is_(False)),
        total_users=await _count(db, User),
        total_categories=await _count(db, Category),
        total_tags=await _count(db, Tag),
        avg_comments_per_post=round(avg_comments, 2),
        cache_info=cache.stats,
    )
