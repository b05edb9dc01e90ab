"""
Service-level tests for the post lifecycle: slugs, publishing, taxonomy
replacement, listings and throttled view counting.
"""
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from blog_api.errors import ConflictError, ForbiddenError, NotFoundError
from blog_api.models import Comment, Post, PostStatus, Tag, UserRole
from blog_api.schemas import CategoryCreate, CommentCreate, PostCreate, PostUpdate
from blog_api.services import comment_service, post_service, taxonomy_service
from blog_api.views import InMemoryViewTracker
from conftest import make_user


def _post(title: str = "Hello World", **kwargs) -> PostCreate:
    kwargs.setdefault("content", "Body text")
    return PostCreate(title=title, **kwargs)


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock(monkeypatch) -> FakeClock:
    fake = FakeClock()
    monkeypatch.setattr(post_service, "utcnow", fake)
    return fake


# ---------------------------------------------------------------------------
# Creation and slugs
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_create_post_published_with_tags(db_session: AsyncSession):
    author = await make_user(db_session, "writer", UserRole.AUTHOR)
    post = await post_service.create_post(
        db_session,
        author.id,
        _post("Getting Started!!", is_draft=False, tags=["Python", "FastAPI"]),
    )
    assert post.slug == "getting-started"
    assert post.status == PostStatus.PUBLISHED
    assert post.published_at is not None
    assert post.view_count == 0
    assert post.is_featured is False
    assert post.author.username == "writer"
    assert sorted(t.slug for t in post.tags) == ["fastapi", "python"]


@pytest.mark.asyncio
async def test_create_post_draft_by_default(db_session: AsyncSession):
    author = await make_user(db_session, "writer", UserRole.AUTHOR)
    post = await post_service.create_post(db_session, author.id, _post())
    assert post.status == PostStatus.DRAFT
    assert post.published_at is None
    assert post.tags == []
    assert post.categories == []


@pytest.mark.asyncio
async def test_create_post_unknown_author(db_session: AsyncSession):
    with pytest.raises(NotFoundError):
        await post_service.create_post(db_session, 9999, _post())


@pytest.mark.asyncio
async def test_duplicate_titles_get_numbered_slugs(db_session: AsyncSession):
    author = await make_user(db_session, "writer", UserRole.AUTHOR)
    slugs = [
        (await post_service.create_post(db_session, author.id, _post("Release Notes"))).slug
        for _ in range(3)
    ]
    assert slugs == ["release-notes", "release-notes-1", "release-notes-2"]


@pytest.mark.asyncio
async def test_suffixed_slug_respects_max_length(db_session: AsyncSession):
    author = await make_user(db_session, "writer", UserRole.AUTHOR)
    title = "a" * 200
    first = await post_service.create_post(db_session, author.id, _post(title))
    second = await post_service.create_post(db_session, author.id, _post(title))
    assert first.slug == "a" * 200
    assert second.slug == "a" * 198 + "-1"


@pytest.mark.asyncio
async def test_punctuation_title_falls_back_to_untitled(db_session: AsyncSession):
    author = await make_user(db_session, "writer", UserRole.AUTHOR)
    first = await post_service.create_post(db_session, author.id, _post("!!!"))
    second = await post_service.create_post(db_session, author.id, _post("???"))
    assert first.slug == "untitled"
    assert second.slug == "untitled-1"


@pytest.mark.asyncio
async def test_slug_race_caught_by_unique_index(db_session: AsyncSession, monkeypatch):
    """A writer that slips past the suffixing check gets a conflict, not a duplicate."""
    author = await make_user(db_session, "writer", UserRole.AUTHOR)
    await post_service.create_post(db_session, author.id, _post("Release Notes"))
    await db_session.commit()

    async def never_exists(db, slug, exclude_post_id=None):
        return False

    monkeypatch.setattr(post_service, "slug_exists", never_exists)
    with pytest.raises(ConflictError):
        await post_service.create_post(db_session, author.id, _post("Release Notes"))
    await db_session.rollback()
    count = await db_session.scalar(select(func.count()).select_from(Post))
    assert count == 1


# ---------------------------------------------------------------------------
# Updates
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_update_title_regenerates_slug(db_session: AsyncSession):
    author = await make_user(db_session, "writer", UserRole.AUTHOR)
    await post_service.create_post(db_session, author.id, _post("Taken Title"))
    post = await post_service.create_post(db_session, author.id, _post("Original"))

    updated = await post_service.update_post(db_session, post.id, PostUpdate(title="Taken Title"))
    assert updated.slug == "taken-title-1"
    assert updated.updated_at is not None


@pytest.mark.asyncio
async def test_update_same_slug_keeps_own_slug(db_session: AsyncSession):
    author = await make_user(db_session, "writer", UserRole.AUTHOR)
    post = await post_service.create_post(db_session, author.id, _post("Alpha"))
    updated = await post_service.update_post(db_session, post.id, PostUpdate(title="Alpha!"))
    assert updated.title == "Alpha!"
    assert updated.slug == "alpha"


@pytest.mark.asyncio
async def test_update_without_title_keeps_slug(db_session: AsyncSession):
    author = await make_user(db_session, "writer", UserRole.AUTHOR)
    post = await post_service.create_post(db_session, author.id, _post("Stable"))
    updated = await post_service.update_post(
        db_session, post.id, PostUpdate(content="new body", summary="short")
    )
    assert updated.slug == "stable"
    assert updated.content == "new body"
    assert updated.summary == "short"


@pytest.mark.asyncio
async def test_update_empty_tags_clears_all(db_session: AsyncSession):
    author = await make_user(db_session, "writer", UserRole.AUTHOR)
    post = await post_service.create_post(
        db_session, author.id, _post(tags=["python", "fastapi", "redis"])
    )
    assert len(post.tags) == 3

    updated = await post_service.update_post(db_session, post.id, PostUpdate(tags=[]))
    assert updated.tags == []
    # The tags themselves survive.
    remaining = (await db_session.execute(select(func.count()).select_from(Tag))).scalar_one()
    assert remaining == 3


@pytest.mark.asyncio
async def test_update_omitting_tags_leaves_them(db_session: AsyncSession):
    author = await make_user(db_session, "writer", UserRole.AUTHOR)
    post = await post_service.create_post(db_session, author.id, _post(tags=["python"]))
    updated = await post_service.update_post(db_session, post.id, PostUpdate(summary="s"))
    assert [t.slug for t in updated.tags] == ["python"]


@pytest.mark.asyncio
async def test_last_update_wins_for_taxonomy(db_session: AsyncSession):
    author = await make_user(db_session, "writer", UserRole.AUTHOR)
    news = await taxonomy_service.create_category(db_session, CategoryCreate(name="News"))
    tips = await taxonomy_service.create_category(db_session, CategoryCreate(name="Tips"))
    post = await post_service.create_post(db_session, author.id, _post(category_ids=[news.id]))

    await post_service.update_post(
        db_session, post.id, PostUpdate(category_ids=[news.id, tips.id], tags=["a", "b"])
    )
    final = await post_service.update_post(
        db_session, post.id, PostUpdate(category_ids=[tips.id], tags=["c"])
    )
    assert [c.slug for c in final.categories] == ["tips"]
    assert [t.slug for t in final.tags] == ["c"]


@pytest.mark.asyncio
async def test_unknown_category_ids_are_skipped(db_session: AsyncSession):
    author = await make_user(db_session, "writer", UserRole.AUTHOR)
    news = await taxonomy_service.create_category(db_session, CategoryCreate(name="News"))
    post = await post_service.create_post(
        db_session, author.id, _post(category_ids=[news.id, 9999, news.id])
    )
    assert [c.id for c in post.categories] == [news.id]


@pytest.mark.asyncio
async def test_duplicate_tag_names_collapse(db_session: AsyncSession):
    author = await make_user(db_session, "writer", UserRole.AUTHOR)
    post = await post_service.create_post(
        db_session, author.id, _post(tags=["CSharp", " csharp ", "csharp"])
    )
    assert [(t.name, t.slug) for t in post.tags] == [("csharp", "csharp")]


@pytest.mark.asyncio
async def test_update_missing_post(db_session: AsyncSession):
    with pytest.raises(NotFoundError):
        await post_service.update_post(db_session, 9999, PostUpdate(title="x"))


# ---------------------------------------------------------------------------
# Ownership
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_ensure_can_manage(db_session: AsyncSession):
    author = await make_user(db_session, "writer", UserRole.AUTHOR)
    other = await make_user(db_session, "other", UserRole.AUTHOR)
    admin = await make_user(db_session, "boss", UserRole.ADMIN)
    post = await post_service.create_post(db_session, author.id, _post())

    await post_service.ensure_can_manage(db_session, post.id, author)
    await post_service.ensure_can_manage(db_session, post.id, admin)
    with pytest.raises(ForbiddenError):
        await post_service.ensure_can_manage(db_session, post.id, other)
    with pytest.raises(NotFoundError):
        await post_service.ensure_can_manage(db_session, 9999, admin)


# ---------------------------------------------------------------------------
# State transitions
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_publish_twice_restamps_published_at(db_session: AsyncSession, clock: FakeClock):
    author = await make_user(db_session, "writer", UserRole.AUTHOR)
    post = await post_service.create_post(db_session, author.id, _post())

    first = await post_service.publish_post(db_session, post.id)
    assert first.status == PostStatus.PUBLISHED
    assert first.published_at == clock.now

    clock.advance(hours=1)
    second = await post_service.publish_post(db_session, post.id)
    assert second.status == PostStatus.PUBLISHED
    assert second.published_at == clock.now


@pytest.mark.asyncio
async def test_unpublish_keeps_published_at(db_session: AsyncSession, clock: FakeClock):
    author = await make_user(db_session, "writer", UserRole.AUTHOR)
    post = await post_service.create_post(db_session, author.id, _post())
    published = await post_service.publish_post(db_session, post.id)

    clock.advance(minutes=5)
    draft = await post_service.unpublish_post(db_session, post.id)
    assert draft.status == PostStatus.DRAFT
    assert draft.published_at == published.published_at


@pytest.mark.asyncio
async def test_featured_draft_is_not_listed(db_session: AsyncSession):
    author = await make_user(db_session, "writer", UserRole.AUTHOR)
    draft = await post_service.create_post(db_session, author.id, _post("Draft"))
    live = await post_service.create_post(db_session, author.id, _post("Live", is_draft=False))

    featured_draft = await post_service.feature_post(db_session, draft.id)
    assert featured_draft.is_featured is True
    assert featured_draft.status == PostStatus.DRAFT
    await post_service.feature_post(db_session, live.id)

    featured = await post_service.list_featured_posts(db_session)
    assert [p.id for p in featured] == [live.id]

    await post_service.unfeature_post(db_session, live.id)
    assert await post_service.list_featured_posts(db_session) == []


@pytest.mark.asyncio
async def test_transition_missing_post(db_session: AsyncSession):
    with pytest.raises(NotFoundError):
        await post_service.publish_post(db_session, 9999)


# ---------------------------------------------------------------------------
# Reads and view counting
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_get_by_slug_only_finds_published(db_session: AsyncSession):
    author = await make_user(db_session, "writer", UserRole.AUTHOR)
    await post_service.create_post(db_session, author.id, _post("Hidden"))
    with pytest.raises(NotFoundError):
        await post_service.get_post_by_slug(db_session, "hidden", InMemoryViewTracker())
    with pytest.raises(NotFoundError):
        await post_service.get_post_by_slug(db_session, "nope", InMemoryViewTracker())


@pytest.mark.asyncio
async def test_view_counting_is_throttled_per_session(db_session: AsyncSession, clock: FakeClock):
    author = await make_user(db_session, "writer", UserRole.AUTHOR)
    await post_service.create_post(db_session, author.id, _post("Popular", is_draft=False))
    alice, bob = InMemoryViewTracker(), InMemoryViewTracker()

    post = await post_service.get_post_by_slug(db_session, "popular", alice)
    assert post.view_count == 1

    clock.advance(minutes=10)
    post = await post_service.get_post_by_slug(db_session, "popular", alice)
    assert post.view_count == 1

    post = await post_service.get_post_by_slug(db_session, "popular", bob)
    assert post.view_count == 2

    # The window is measured from the last counted view and is exclusive.
    clock.advance(minutes=20)
    post = await post_service.get_post_by_slug(db_session, "popular", alice)
    assert post.view_count == 2

    clock.advance(minutes=1)
    post = await post_service.get_post_by_slug(db_session, "popular", alice)
    assert post.view_count == 3


@pytest.mark.asyncio
async def test_get_post_missing(db_session: AsyncSession):
    with pytest.raises(NotFoundError):
        await post_service.get_post(db_session, 9999)


# ---------------------------------------------------------------------------
# Listings
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_list_published_newest_first(db_session: AsyncSession, clock: FakeClock):
    author = await make_user(db_session, "writer", UserRole.AUTHOR)
    old = await post_service.create_post(db_session, author.id, _post("Old", is_draft=False))
    clock.advance(days=1)
    new = await post_service.create_post(db_session, author.id, _post("New", is_draft=False))
    await post_service.create_post(db_session, author.id, _post("Draft"))

    page = await post_service.list_published_posts(db_session, page=1, page_size=10)
    assert page.total == 2
    assert page.pages == 1
    assert [p.id for p in page.items] == [new.id, old.id]


@pytest.mark.asyncio
async def test_list_published_pagination(db_session: AsyncSession):
    author = await make_user(db_session, "writer", UserRole.AUTHOR)
    for i in range(5):
        await post_service.create_post(db_session, author.id, _post(f"Post {i}", is_draft=False))

    page = await post_service.list_published_posts(db_session, page=2, page_size=2)
    assert page.total == 5
    assert page.pages == 3
    assert len(page.items) == 2

    empty = await post_service.list_published_posts(db_session, page=9, page_size=2)
    assert empty.items == []


@pytest.mark.asyncio
async def test_list_by_author_drafts_on_request(db_session: AsyncSession):
    author = await make_user(db_session, "writer", UserRole.AUTHOR)
    await post_service.create_post(db_session, author.id, _post("Live", is_draft=False))
    await post_service.create_post(db_session, author.id, _post("Draft"))

    public = await post_service.list_posts_by_author(db_session, author.id)
    assert [p.slug for p in public.items] == ["live"]

    everything = await post_service.list_posts_by_author(
        db_session, author.id, include_drafts=True
    )
    assert everything.total == 2

    with pytest.raises(NotFoundError):
        await post_service.list_posts_by_author(db_session, 9999)


@pytest.mark.asyncio
async def test_list_by_category_and_tag(db_session: AsyncSession):
    author = await make_user(db_session, "writer", UserRole.AUTHOR)
    news = await taxonomy_service.create_category(db_session, CategoryCreate(name="News"))
    tagged = await post_service.create_post(
        db_session,
        author.id,
        _post("Tagged", is_draft=False, category_ids=[news.id], tags=["python"]),
    )
    await post_service.create_post(
        db_session, author.id, _post("Draft", category_ids=[news.id], tags=["python"])
    )
    await post_service.create_post(db_session, author.id, _post("Plain", is_draft=False))

    by_category = await post_service.list_posts_by_category(db_session, news.id)
    assert [p.id for p in by_category.items] == [tagged.id]

    python = tagged.tags[0]
    by_tag = await post_service.list_posts_by_tag(db_session, python.id)
    assert [p.id for p in by_tag.items] == [tagged.id]

    with pytest.raises(NotFoundError):
        await post_service.list_posts_by_category(db_session, 9999)
    with pytest.raises(NotFoundError):
        await post_service.list_posts_by_tag(db_session, 9999)


@pytest.mark.asyncio
async def test_search_matches_title_content_and_summary(db_session: AsyncSession):
    author = await make_user(db_session, "writer", UserRole.AUTHOR)
    await post_service.create_post(
        db_session, author.id, _post("Async Patterns", is_draft=False)
    )
    await post_service.create_post(
        db_session,
        author.id,
        PostCreate(title="Other", content="All about ASYNC io", is_draft=False),
    )
    await post_service.create_post(
        db_session,
        author.id,
        PostCreate(title="Third", content="x", summary="async summary", is_draft=False),
    )
    await post_service.create_post(db_session, author.id, _post("Async draft"))

    results = await post_service.search_posts(db_session, "  Async ")
    assert results.total == 3


@pytest.mark.asyncio
async def test_search_treats_like_wildcards_literally(db_session: AsyncSession):
    author = await make_user(db_session, "writer", UserRole.AUTHOR)
    await post_service.create_post(db_session, author.id, _post("Plain title", is_draft=False))
    await post_service.create_post(
        db_session,
        author.id,
        PostCreate(title="Discounts", content="Save 50% today", is_draft=False),
    )

    assert (await post_service.search_posts(db_session, "_")).total == 0
    percent = await post_service.search_posts(db_session, "%")
    assert [p.title for p in percent.items] == ["Discounts"]


# ---------------------------------------------------------------------------
# Deletion
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_delete_post_removes_comments(db_session: AsyncSession):
    author = await make_user(db_session, "writer", UserRole.AUTHOR)
    post = await post_service.create_post(db_session, author.id, _post(is_draft=False))
    await comment_service.create_comment(
        db_session, author.id, CommentCreate(post_id=post.id, content="first")
    )

    await post_service.delete_post(db_session, post.id)

    with pytest.raises(NotFoundError):
        await post_service.get_post(db_session, post.id)
    count = (await db_session.execute(select(func.count()).select_from(Comment))).scalar_one()
    assert count == 0

    with pytest.raises(NotFoundError):
        await post_service.delete_post(db_session, post.id)
