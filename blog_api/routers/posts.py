from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from blog_api.database import get_db
from blog_api.dependencies import (
    PaginationParams,
    get_current_user,
    get_optional_user,
    get_view_tracker,
    require_admin,
    require_author,
)
from blog_api.models import User
from blog_api.schemas import PaginatedResponse, PostCreate, PostDetail, PostResponse, PostUpdate
from blog_api.services import post_service
from blog_api.views import ViewTracker

router = APIRouter(prefix="/api/v1/posts", tags=["posts"])


# --- Listings -------------------------------------------------------------

@router.get("/published", response_model=PaginatedResponse)
async def list_published_posts(
    pagination: PaginationParams = Depends(),
    db: AsyncSession = Depends(get_db),
):
    return await post_service.list_published_posts(db, pagination.page, pagination.page_size)


@router.get("/featured", response_model=list[PostResponse])
async def list_featured_posts(db: AsyncSession = Depends(get_db)):
    return await post_service.list_featured_posts(db)


@router.get("/search", response_model=PaginatedResponse)
async def search_posts(
    q: str = Query(..., min_length=1, max_length=200),
    pagination: PaginationParams = Depends(),
    db: AsyncSession = Depends(get_db),
):
    return await post_service.search_posts(db, q, pagination.page, pagination.page_size)


@router.get("/author/{author_id}", response_model=PaginatedResponse)
async def list_posts_by_author(
    author_id: int,
    pagination: PaginationParams = Depends(),
    user: User | None = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db),
):
    # Authors and admins see drafts; everyone else only published posts.
    include_drafts = user is not None and (user.id == author_id or user.is_admin)
    return await post_service.list_posts_by_author(
        db, author_id, pagination.page, pagination.page_size, include_drafts=include_drafts
    )


@router.get("/category/{category_id}", response_model=PaginatedResponse)
async def list_posts_by_category(
    category_id: int,
    pagination: PaginationParams = Depends(),
    db: AsyncSession = Depends(get_db),
):
    return await post_service.list_posts_by_category(
        db, category_id, pagination.page, pagination.page_size
    )


@router.get("/tag/{tag_id}", response_model=PaginatedResponse)
async def list_posts_by_tag(
    tag_id: int,
    pagination: PaginationParams = Depends(),
    db: AsyncSession = Depends(get_db),
):
    return await post_service.list_posts_by_tag(db, tag_id, pagination.page, pagination.page_size)


# --- Single post ----------------------------------------------------------

@router.get("/slug/{slug}", response_model=PostDetail)
async def get_post_by_slug(
    slug: str,
    tracker: ViewTracker = Depends(get_view_tracker),
    db: AsyncSession = Depends(get_db),
):
    return await post_service.get_post_by_slug(db, slug, tracker)


@router.get("/{post_id}", response_model=PostDetail)
async def get_post(post_id: int, db: AsyncSession = Depends(get_db)):
    return await post_service.get_post(db, post_id)


@router.post("", status_code=201, response_model=PostDetail)
async def create_post(
    data: PostCreate,
    user: User = Depends(require_author),
    db: AsyncSession = Depends(get_db),
):
    return await post_service.create_post(db, user.id, data)


@router.put("/{post_id}", response_model=PostDetail)
async def update_post(
    post_id: int,
    data: PostUpdate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await post_service.ensure_can_manage(db, post_id, user)
    return await post_service.update_post(db, post_id, data)


@router.delete("/{post_id}", status_code=204)
async def delete_post(
    post_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await post_service.ensure_can_manage(db, post_id, user)
    await post_service.delete_post(db, post_id)


# --- State transitions ----------------------------------------------------

@router.put("/{post_id}/publish", response_model=PostDetail)
async def publish_post(
    post_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await post_service.ensure_can_manage(db, post_id, user)
    return await post_service.publish_post(db, post_id)


@router.put("/{post_id}/unpublish", response_model=PostDetail)
async def unpublish_post(
    post_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await post_service.ensure_can_manage(db, post_id, user)
    return await post_service.unpublish_post(db, post_id)


@router.put("/{post_id}/feature", response_model=PostDetail)
async def feature_post(
    post_id: int,
    _: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await post_service.feature_post(db, post_id)


@router.put("/{post_id}/unfeature", response_model=PostDetail)
async def unfeature_post(
    post_id: int,
    _: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await post_service.unfeature_post(db, post_id)
