"""
Post service: the content lifecycle of the Post aggregate.

Design notes
------------
- Post slugs are de-duplicated by suffixing (``release-notes``,
  ``release-notes-1``, ...).  The existence check is a fast path only; a
  racing writer that slips past it trips the unique index on flush and
  surfaces as ``ConflictError``.
- Taxonomy changes go through ``taxonomy_service``'s full-replace
  operations.  After any write the aggregate is re-read with
  ``populate_existing`` so the returned categories/tags reflect the rows
  actually stored.
- Reading by slug counts a view at most once per viewing session and post
  within ``settings.VIEW_THROTTLE_MINUTES``.  The session marker is reached
  through a ``ViewTracker``; the service never sees session identity.
- Status transitions: publish always re-stamps ``published_at``; unpublish
  keeps it, so the last publication time survives a round trip to draft.
- Service functions flush but do not commit; ``get_db`` owns the
  transaction.
"""
import logging
import math
from datetime import timedelta

from sqlalchemy import desc, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload, selectinload

from blog_api.cache import cache, published_page_key
from blog_api.config import settings
from blog_api.errors import ForbiddenError, NotFoundError
from blog_api.models import (
    Category,
    Post,
    PostStatus,
    Tag,
    User,
    post_categories,
    post_tags,
    utcnow,
)
from blog_api.schemas import PaginatedResponse, PostCreate, PostDetail, PostResponse, PostUpdate
from blog_api.services import taxonomy_service
from blog_api.slugs import generate_slug, truncate_slug
from blog_api.views import ViewTracker

logger = logging.getLogger(__name__)

SLUG_MAX_LENGTH = 200

_REQUIRED_FIELDS = frozenset({"content", "allow_comments"})

_AGGREGATE_OPTIONS = (
    joinedload(Post.author),
    selectinload(Post.categories),
    selectinload(Post.tags),
)


# ---------------------------------------------------------------------------
# Loading helpers
# ---------------------------------------------------------------------------

async def _load_post(db: AsyncSession, *conditions, refresh: bool = False) -> Post | None:
    q = select(Post).where(*conditions).options(*_AGGREGATE_OPTIONS)
    if refresh:
        q = q.execution_options(populate_existing=True)
    result = await db.execute(q)
    return result.unique().scalar_one_or_none()


async def _get_post_or_404(db: AsyncSession, post_id: int) -> Post:
    post = await _load_post(db, Post.id == post_id)
    if post is None:
        raise NotFoundError("Post not found")
    return post


async def _reload(db: AsyncSession, post: Post) -> PostDetail:
    fresh = await _load_post(db, Post.id == post.id, refresh=True)
    return PostDetail.model_validate(fresh)


async def ensure_can_manage(db: AsyncSession, post_id: int, actor: User) -> None:
    """Raise unless *actor* wrote the post or is an admin."""
    result = await db.execute(select(Post.author_id).where(Post.id == post_id))
    author_id = result.scalar_one_or_none()
    if author_id is None:
        raise NotFoundError("Post not found")
    if author_id != actor.id and not actor.is_admin:
        raise ForbiddenError("You don't have permission to modify this post")


# ---------------------------------------------------------------------------
# Slugs
# ---------------------------------------------------------------------------

async def slug_exists(db: AsyncSession, slug: str, exclude_post_id: int | None = None) -> bool:
    q = select(Post.id).where(Post.slug == slug)
    if exclude_post_id is not None:
        q = q.where(Post.id != exclude_post_id)
    result = await db.execute(q.limit(1))
    return result.first() is not None


async def generate_unique_slug(
    db: AsyncSession, title: str, exclude_post_id: int | None = None
) -> str:
    """
    Derive a slug from *title* that no other post uses, appending ``-1``,
    ``-2``, ... on collision.  *exclude_post_id* lets a post keep its own
    slug when it is being updated.
    """
    base = truncate_slug(generate_slug(title), SLUG_MAX_LENGTH)
    slug = base
    counter = 1
    while await slug_exists(db, slug, exclude_post_id):
        suffix = f"-{counter}"
        slug = truncate_slug(base, SLUG_MAX_LENGTH - len(suffix)) + suffix
        counter += 1
    return slug


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

async def create_post(db: AsyncSession, author_id: int, data: PostCreate) -> PostDetail:
    """
    Create a post for *author_id* and return the fully loaded aggregate.

    ``is_draft=False`` publishes immediately (``published_at`` = now).
    """
    if await db.get(User, author_id) is None:
        raise NotFoundError("Author not found")

    post = Post(
        title=data.title,
        slug=await generate_unique_slug(db, data.title),
        content=data.content,
        summary=data.summary,
        cover_image_url=data.cover_image_url,
        allow_comments=data.allow_comments,
        author_id=author_id,
        view_count=0,
        is_featured=False,
    )
    if data.is_draft:
        post.status = PostStatus.DRAFT
    else:
        post.status = PostStatus.PUBLISHED
        post.published_at = utcnow()

    db.add(post)
    await taxonomy_service.flush_or_conflict(db, f"A post with slug '{post.slug}' already exists")

    if data.category_ids:
        await taxonomy_service.replace_post_categories(db, post, data.category_ids)
    if data.tags:
        await taxonomy_service.replace_post_tags(db, post, data.tags)

    await cache.invalidate_posts()
    logger.info("Created post %s (slug=%s, status=%s)", post.id, post.slug, post.status.value)
    return await _reload(db, post)


async def update_post(db: AsyncSession, post_id: int, data: PostUpdate) -> PostDetail:
    """
    Apply a partial update.

    A changed title regenerates the slug.  ``category_ids`` / ``tags``, when
    present (even empty), replace the whole association set.
    """
    post = await _get_post_or_404(db, post_id)
    update_data = data.model_dump(exclude_unset=True)
    category_ids: list[int] | None = update_data.pop("category_ids", None)
    tag_names: list[str] | None = update_data.pop("tags", None)

    new_title = update_data.pop("title", None)
    if new_title and new_title != post.title:
        post.slug = await generate_unique_slug(db, new_title, exclude_post_id=post.id)
        post.title = new_title

    for field, value in update_data.items():
        # An explicit null on a required column means "leave as is".
        if value is None and field in _REQUIRED_FIELDS:
            continue
        setattr(post, field, value)
    post.updated_at = utcnow()

    await taxonomy_service.flush_or_conflict(db, f"A post with slug '{post.slug}' already exists")

    if category_ids is not None:
        await taxonomy_service.replace_post_categories(db, post, category_ids)
    if tag_names is not None:
        await taxonomy_service.replace_post_tags(db, post, tag_names)

    await cache.invalidate_posts()
    return await _reload(db, post)


async def delete_post(db: AsyncSession, post_id: int) -> None:
    post = await _get_post_or_404(db, post_id)
    await db.delete(post)
    await db.flush()
    await cache.invalidate_posts()
    await cache.invalidate_taxonomy()
    logger.info("Deleted post %s", post_id)


async def _transition(db: AsyncSession, post_id: int, **changes) -> PostDetail:
    post = await _get_post_or_404(db, post_id)
    for field, value in changes.items():
        setattr(post, field, value)
    post.updated_at = utcnow()
    await db.flush()
    await cache.invalidate_posts()
    logger.info("Post %s: %s", post_id, ", ".join(f"{k}={v}" for k, v in changes.items()))
    return PostDetail.model_validate(post)


async def publish_post(db: AsyncSession, post_id: int) -> PostDetail:
    """Publish *post_id*, stamping ``published_at`` with the current time on every call."""
    return await _transition(db, post_id, status=PostStatus.PUBLISHED, published_at=utcnow())


async def unpublish_post(db: AsyncSession, post_id: int) -> PostDetail:
    """Move *post_id* back to draft; ``published_at`` is kept."""
    return await _transition(db, post_id, status=PostStatus.DRAFT)


async def feature_post(db: AsyncSession, post_id: int) -> PostDetail:
    return await _transition(db, post_id, is_featured=True)


async def unfeature_post(db: AsyncSession, post_id: int) -> PostDetail:
    return await _transition(db, post_id, is_featured=False)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

async def get_post(db: AsyncSession, post_id: int) -> PostDetail:
    return PostDetail.model_validate(await _get_post_or_404(db, post_id))


async def get_post_by_slug(db: AsyncSession, slug: str, tracker: ViewTracker) -> PostDetail:
    """
    Return the published post at *slug*, counting a view unless *tracker*
    saw this post within the throttle window.
    """
    post = await _load_post(db, Post.slug == slug, Post.status == PostStatus.PUBLISHED)
    if post is None:
        raise NotFoundError("Post not found")

    now = utcnow()
    window = timedelta(minutes=settings.VIEW_THROTTLE_MINUTES)
    last_viewed = await tracker.get_last_viewed(post.id)
    if last_viewed is None or now - last_viewed > window:
        post.view_count += 1
        await db.flush()
        await tracker.mark_viewed(post.id, now)
        logger.debug("Counted view of post %s (now %d)", post.id, post.view_count)
    else:
        logger.debug("View of post %s throttled (last seen %s)", post.id, last_viewed)
    return PostDetail.model_validate(post)


async def _paginate(
    db: AsyncSession,
    conditions: list,
    order_by: tuple,
    page: int,
    page_size: int,
) -> PaginatedResponse:
    count_q = select(func.count()).select_from(Post).where(*conditions)
    total: int = (await db.execute(count_q)).scalar_one()

    q = (
        select(Post)
        .where(*conditions)
        .options(*_AGGREGATE_OPTIONS)
        .order_by(*order_by)
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    result = await db.execute(q)
    posts = result.unique().scalars().all()
    return PaginatedResponse(
        items=[PostResponse.model_validate(p) for p in posts],
        total=total,
        page=page,
        page_size=page_size,
        pages=math.ceil(total / page_size) if total > 0 else 0,
    )


_NEWEST_PUBLISHED = (desc(Post.published_at), desc(Post.id))
_NEWEST_CREATED = (desc(Post.created_at), desc(Post.id))
_IS_PUBLISHED = Post.status == PostStatus.PUBLISHED


async def list_published_posts(
    db: AsyncSession, page: int = 1, page_size: int = settings.DEFAULT_PAGE_SIZE
) -> PaginatedResponse:
    """Published posts, newest first, served cache-aside from Redis."""
    cache_key = published_page_key(page, page_size)
    cached = await cache.get(cache_key)
    if cached:
        return PaginatedResponse(**cached)

    response = await _paginate(db, [_IS_PUBLISHED], _NEWEST_PUBLISHED, page, page_size)
    await cache.set(cache_key, response.model_dump(mode="json"), ttl=settings.CACHE_TTL_LIST)
    return response


async def list_posts_by_author(
    db: AsyncSession,
    author_id: int,
    page: int = 1,
    page_size: int = settings.DEFAULT_PAGE_SIZE,
    include_drafts: bool = False,
) -> PaginatedResponse:
    """Posts written by *author_id*; drafts only when *include_drafts*."""
    if await db.get(User, author_id) is None:
        raise NotFoundError("Author not found")
    conditions = [Post.author_id == author_id]
    if not include_drafts:
        conditions.append(_IS_PUBLISHED)
    return await _paginate(db, conditions, _NEWEST_CREATED, page, page_size)


async def list_featured_posts(db: AsyncSession) -> list[PostResponse]:
    """Featured posts that are also published; featured drafts stay hidden."""
    q = (
        select(Post)
        .where(Post.is_featured.is_(True), _IS_PUBLISHED)
        .options(*_AGGREGATE_OPTIONS)
        .order_by(*_NEWEST_PUBLISHED)
    )
    result = await db.execute(q)
    return [PostResponse.model_validate(p) for p in result.unique().scalars().all()]


async def search_posts(
    db: AsyncSession, term: str, page: int = 1, page_size: int = settings.DEFAULT_PAGE_SIZE
) -> PaginatedResponse:
    """Case-insensitive substring match on title, content and summary of published posts."""
    # autoescape: "%" and "_" in the term match literally.
    term = term.strip()
    match = or_(
        Post.title.icontains(term, autoescape=True),
        Post.content.icontains(term, autoescape=True),
        Post.summary.icontains(term, autoescape=True),
    )
    return await _paginate(db, [_IS_PUBLISHED, match], _NEWEST_PUBLISHED, page, page_size)


async def list_posts_by_category(
    db: AsyncSession,
    category_id: int,
    page: int = 1,
    page_size: int = settings.DEFAULT_PAGE_SIZE,
) -> PaginatedResponse:
    if await db.get(Category, category_id) is None:
        raise NotFoundError("Category not found")
    in_category = Post.id.in_(
        select(post_categories.c.post_id).where(post_categories.c.category_id == category_id)
    )
    return await _paginate(db, [_IS_PUBLISHED, in_category], _NEWEST_PUBLISHED, page, page_size)


async def list_posts_by_tag(
    db: AsyncSession,
    tag_id: int,
    page: int = 1,
    page_size: int = settings.DEFAULT_PAGE_SIZE,
) -> PaginatedResponse:
    if await db.get(Tag, tag_id) is None:
        raise NotFoundError("Tag not found")
    with_tag = Post.id.in_(select(post_tags.c.post_id).where(post_tags.c.tag_id == tag_id))
    return await _paginate(db, [_IS_PUBLISHED, with_tag], _NEWEST_PUBLISHED, page, page_size)
