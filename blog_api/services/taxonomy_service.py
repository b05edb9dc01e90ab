"""
Taxonomy service: categories, tags and the post <-> taxonomy associations.

Two halves live here:

- The reconciler used while authoring posts.  ``find_or_create_tag`` is the
  single upsert-by-slug primitive for implicit tag creation, and
  ``replace_post_categories`` / ``replace_post_tags`` implement full-replace
  semantics: the association rows for the post are deleted, then a fresh
  set is inserted.  Two concurrent updates of the same post therefore
  resolve as last-writer-wins.
- Explicit category / tag administration.  Unlike posts, a slug collision
  here is a ``ConflictError``; there is no automatic suffixing.

The service-level uniqueness checks are only a fast path.  The unique
indexes on ``slug`` are the real guarantee, and ``flush_or_conflict``
converts the ``IntegrityError`` a racing writer hits into the same
``ConflictError``.
"""
import logging

from sqlalchemy import delete, desc, func, insert, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from blog_api.cache import cache, popular_tags_key
from blog_api.config import settings
from blog_api.errors import ConflictError, InvalidStateError, NotFoundError
from blog_api.models import Category, Post, Tag, post_categories, post_tags, utcnow
from blog_api.schemas import (
    CategoryCreate,
    CategoryResponse,
    CategoryUpdate,
    CategoryWithCount,
    TagCreate,
    TagResponse,
    TagUpdate,
    TagWithCount,
)
from blog_api.slugs import generate_slug, has_slug_characters

logger = logging.getLogger(__name__)


async def flush_or_conflict(db: AsyncSession, message: str) -> None:
    """Flush pending writes, reporting a unique-constraint violation as a conflict."""
    try:
        await db.flush()
    except IntegrityError as exc:
        logger.info("Unique constraint rejected write: %s", exc.orig)
        raise ConflictError(message) from exc


# ---------------------------------------------------------------------------
# Reconciler (post authoring)
# ---------------------------------------------------------------------------

def normalize_tag_name(name: str) -> str:
    return name.strip().lower()


async def find_or_create_tag(db: AsyncSession, name: str) -> Tag:
    """
    Return the tag whose slug matches *name*, creating it if needed.

    Names are trimmed and lower-cased first, so "CSharp", " csharp " and
    "csharp" all resolve to the same stored tag.  A name with no letters or
    digits has no slug of its own and is rejected.
    """
    normalized = normalize_tag_name(name)
    if not has_slug_characters(normalized):
        raise InvalidStateError(f"Tag name {name!r} has no letters or digits")
    slug = generate_slug(normalized)
    result = await db.execute(select(Tag).where(Tag.slug == slug))
    tag = result.scalar_one_or_none()
    if tag is None:
        tag = Tag(name=normalized, slug=slug)
        db.add(tag)
        await flush_or_conflict(db, f"Tag with slug '{slug}' was created concurrently")
        logger.debug("Created tag %r (slug=%s) while authoring a post", normalized, slug)
    return tag


async def resolve_categories(db: AsyncSession, category_ids: list[int]) -> list[Category]:
    """Look up *category_ids*, silently skipping ids that do not exist."""
    wanted = list(dict.fromkeys(category_ids))
    if not wanted:
        return []
    result = await db.execute(select(Category).where(Category.id.in_(wanted)))
    found = {c.id: c for c in result.scalars().all()}
    skipped = [cid for cid in wanted if cid not in found]
    if skipped:
        logger.debug("Ignoring unknown category ids %s", skipped)
    return [found[cid] for cid in wanted if cid in found]


async def replace_post_categories(db: AsyncSession, post: Post, category_ids: list[int]) -> None:
    """Replace the post's category set with the resolvable ids in *category_ids*."""
    categories = await resolve_categories(db, category_ids)
    await db.execute(delete(post_categories).where(post_categories.c.post_id == post.id))
    if categories:
        await db.execute(
            insert(post_categories),
            [{"post_id": post.id, "category_id": c.id} for c in categories],
        )


async def replace_post_tags(db: AsyncSession, post: Post, tag_names: list[str]) -> None:
    """Replace the post's tag set, creating tags that do not exist yet."""
    tags: dict[int, Tag] = {}
    for name in tag_names:
        tag = await find_or_create_tag(db, name)
        tags[tag.id] = tag
    await db.execute(delete(post_tags).where(post_tags.c.post_id == post.id))
    if tags:
        await db.execute(
            insert(post_tags),
            [{"post_id": post.id, "tag_id": tag_id} for tag_id in tags],
        )
    await cache.invalidate_taxonomy()


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------

async def _get_category_or_404(db: AsyncSession, category_id: int) -> Category:
    category = await db.get(Category, category_id)
    if category is None:
        raise NotFoundError("Category not found")
    return category


async def _category_slug_taken(db: AsyncSession, slug: str) -> bool:
    result = await db.execute(select(Category.id).where(Category.slug == slug))
    return result.first() is not None


async def get_category(db: AsyncSession, category_id: int) -> CategoryResponse:
    return CategoryResponse.model_validate(await _get_category_or_404(db, category_id))


async def get_category_by_slug(db: AsyncSession, slug: str) -> CategoryResponse:
    result = await db.execute(select(Category).where(Category.slug == slug))
    category = result.scalar_one_or_none()
    if category is None:
        raise NotFoundError("Category not found")
    return CategoryResponse.model_validate(category)


async def list_categories(db: AsyncSession) -> list[CategoryResponse]:
    result = await db.execute(select(Category).order_by(Category.name))
    return [CategoryResponse.model_validate(c) for c in result.scalars().all()]


async def list_categories_with_post_count(db: AsyncSession) -> list[CategoryWithCount]:
    """All categories with the number of posts attached to each (any status)."""
    q = (
        select(Category, func.count(post_categories.c.post_id))
        .outerjoin(post_categories, post_categories.c.category_id == Category.id)
        .group_by(Category.id)
        .order_by(Category.name)
    )
    result = await db.execute(q)
    return [
        CategoryWithCount.model_validate(category).model_copy(update={"post_count": count})
        for category, count in result.all()
    ]


async def create_category(db: AsyncSession, data: CategoryCreate) -> CategoryResponse:
    """
    Create a category.  The slug is derived from ``data.slug`` when given,
    otherwise from the name; an existing slug raises ``ConflictError``.
    """
    slug = generate_slug(data.slug or data.name)
    if await _category_slug_taken(db, slug):
        raise ConflictError("A category with this slug already exists")

    category = Category(name=data.name, slug=slug, description=data.description)
    db.add(category)
    await flush_or_conflict(db, "A category with this slug already exists")
    logger.info("Created category %s (slug=%s)", category.id, slug)
    return CategoryResponse.model_validate(category)


async def update_category(
    db: AsyncSession, category_id: int, data: CategoryUpdate
) -> CategoryResponse:
    category = await _get_category_or_404(db, category_id)
    update_data = data.model_dump(exclude_unset=True)

    new_slug: str | None = None
    if update_data.get("slug"):
        new_slug = generate_slug(update_data["slug"])
    elif update_data.get("name") and update_data["name"] != category.name:
        new_slug = generate_slug(update_data["name"])

    if new_slug is not None and new_slug != category.slug:
        if await _category_slug_taken(db, new_slug):
            raise ConflictError("A category with this slug already exists")
        category.slug = new_slug

    if update_data.get("name"):
        category.name = update_data["name"]
    if "description" in update_data:
        category.description = update_data["description"]
    category.updated_at = utcnow()

    await flush_or_conflict(db, "A category with this slug already exists")
    await cache.invalidate_posts()
    return CategoryResponse.model_validate(category)


async def delete_category(db: AsyncSession, category_id: int) -> None:
    """Delete a category; its post associations go with it."""
    category = await _get_category_or_404(db, category_id)
    await db.execute(delete(post_categories).where(post_categories.c.category_id == category.id))
    await db.delete(category)
    await db.flush()
    await cache.invalidate_posts()
    logger.info("Deleted category %s", category_id)


# ---------------------------------------------------------------------------
# Tags
# ---------------------------------------------------------------------------

async def _get_tag_or_404(db: AsyncSession, tag_id: int) -> Tag:
    tag = await db.get(Tag, tag_id)
    if tag is None:
        raise NotFoundError("Tag not found")
    return tag


async def _tag_slug_taken(db: AsyncSession, slug: str) -> bool:
    result = await db.execute(select(Tag.id).where(Tag.slug == slug))
    return result.first() is not None


def _tag_counts_query():
    return (
        select(Tag, func.count(post_tags.c.post_id).label("post_count"))
        .outerjoin(post_tags, post_tags.c.tag_id == Tag.id)
        .group_by(Tag.id)
    )


async def get_tag(db: AsyncSession, tag_id: int) -> TagResponse:
    return TagResponse.model_validate(await _get_tag_or_404(db, tag_id))


async def get_tag_by_slug(db: AsyncSession, slug: str) -> TagResponse:
    result = await db.execute(select(Tag).where(Tag.slug == slug))
    tag = result.scalar_one_or_none()
    if tag is None:
        raise NotFoundError("Tag not found")
    return TagResponse.model_validate(tag)


async def list_tags(db: AsyncSession) -> list[TagResponse]:
    result = await db.execute(select(Tag).order_by(Tag.name))
    return [TagResponse.model_validate(t) for t in result.scalars().all()]


async def list_tags_with_post_count(db: AsyncSession) -> list[TagWithCount]:
    result = await db.execute(_tag_counts_query().order_by(Tag.name))
    return [
        TagWithCount.model_validate(tag).model_copy(update={"post_count": count})
        for tag, count in result.all()
    ]


async def list_popular_tags(db: AsyncSession, count: int | None = None) -> list[TagWithCount]:
    """Top *count* tags by number of posts; ties broken alphabetically."""
    count = count or settings.POPULAR_TAGS_DEFAULT
    cache_key = popular_tags_key(count)
    cached = await cache.get(cache_key)
    if cached is not None:
        return [TagWithCount(**item) for item in cached]

    q = _tag_counts_query().order_by(desc("post_count"), Tag.name).limit(count)
    result = await db.execute(q)
    tags = [
        TagWithCount.model_validate(tag).model_copy(update={"post_count": n})
        for tag, n in result.all()
    ]
    await cache.set(
        cache_key, [t.model_dump(mode="json") for t in tags], ttl=settings.CACHE_TTL_LIST
    )
    return tags


async def create_tag(db: AsyncSession, data: TagCreate) -> TagResponse:
    """Explicitly create a tag; a taken slug raises ``ConflictError``."""
    slug = generate_slug(data.slug or data.name)
    if await _tag_slug_taken(db, slug):
        raise ConflictError("A tag with this slug already exists")

    tag = Tag(name=normalize_tag_name(data.name), slug=slug)
    db.add(tag)
    await flush_or_conflict(db, "A tag with this slug already exists")
    await cache.invalidate_taxonomy()
    logger.info("Created tag %s (slug=%s)", tag.id, slug)
    return TagResponse.model_validate(tag)


async def update_tag(db: AsyncSession, tag_id: int, data: TagUpdate) -> TagResponse:
    tag = await _get_tag_or_404(db, tag_id)
    update_data = data.model_dump(exclude_unset=True)

    new_slug: str | None = None
    if update_data.get("slug"):
        new_slug = generate_slug(update_data["slug"])
    elif update_data.get("name") and normalize_tag_name(update_data["name"]) != tag.name:
        new_slug = generate_slug(normalize_tag_name(update_data["name"]))

    if new_slug is not None and new_slug != tag.slug:
        if await _tag_slug_taken(db, new_slug):
            raise ConflictError("A tag with this slug already exists")
        tag.slug = new_slug

    if update_data.get("name"):
        tag.name = normalize_tag_name(update_data["name"])
    tag.updated_at = utcnow()

    await flush_or_conflict(db, "A tag with this slug already exists")
    await cache.invalidate_taxonomy()
    await cache.invalidate_posts()
    return TagResponse.model_validate(tag)


async def delete_tag(db: AsyncSession, tag_id: int) -> None:
    tag = await _get_tag_or_404(db, tag_id)
    await db.execute(delete(post_tags).where(post_tags.c.tag_id == tag.id))
    await db.delete(tag)
    await db.flush()
    await cache.invalidate_taxonomy()
    await cache.invalidate_posts()
    logger.info("Deleted tag %s", tag_id)
