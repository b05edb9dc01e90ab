from datetime import datetime
from typing import Annotated

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, StringConstraints

from blog_api.models import PostStatus, UserRole
from blog_api.slugs import has_slug_characters


def _require_slug_characters(name: str) -> str:
    if not has_slug_characters(name):
        raise ValueError("must contain at least one letter or digit")
    return name


SlugStr = Annotated[str, Field(max_length=200, pattern=r"^[a-z0-9-]*$")]
TagName = Annotated[
    str,
    StringConstraints(strip_whitespace=True, min_length=1, max_length=50),
    AfterValidator(_require_slug_characters),
]


# --- User ---

class UserBase(BaseModel):
    username: str = Field(max_length=50)
    email: str = Field(max_length=255)
    display_name: str | None = None
    bio: str | None = None


class UserCreate(UserBase):
    """Self-registration payload; new accounts are always readers."""


class UserRoleUpdate(BaseModel):
    role: UserRole


class UserStatusUpdate(BaseModel):
    is_active: bool


class UserResponse(UserBase):
    id: int
    role: UserRole
    is_active: bool
    created_at: datetime
    updated_at: datetime | None = None
    model_config = ConfigDict(from_attributes=True)


class UserDetail(UserResponse):
    post_count: int = 0
    comment_count: int = 0


class UserStatistics(BaseModel):
    total_posts: int
    published_posts: int
    draft_posts: int
    total_comments: int
    approved_comments: int
    pending_comments: int


class AuthorSummary(BaseModel):
    id: int
    username: str
    display_name: str | None = None
    model_config = ConfigDict(from_attributes=True)


# --- Category ---

class CategoryCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    slug: SlugStr | None = None
    description: str | None = Field(None, max_length=500)


class CategoryUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=100)
    slug: SlugStr | None = None
    description: str | None = Field(None, max_length=500)


class CategoryRef(BaseModel):
    id: int
    name: str
    slug: str
    model_config = ConfigDict(from_attributes=True)


class CategoryResponse(CategoryRef):
    description: str | None = None
    created_at: datetime
    updated_at: datetime | None = None


class CategoryWithCount(CategoryResponse):
    post_count: int = 0


# --- Tag ---

class TagCreate(BaseModel):
    name: TagName
    slug: SlugStr | None = None


class TagUpdate(BaseModel):
    name: TagName | None = None
    slug: SlugStr | None = None


class TagResponse(BaseModel):
    id: int
    name: str
    slug: str
    model_config = ConfigDict(from_attributes=True)


class TagWithCount(TagResponse):
    post_count: int = 0


# --- Post ---

class PostCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    content: str
    summary: str | None = Field(None, max_length=500)
    cover_image_url: str | None = Field(None, max_length=500)
    allow_comments: bool = True
    is_draft: bool = True
    category_ids: list[int] = []
    tags: list[TagName] = []


class PostUpdate(BaseModel):
    """
    Partial update.  ``category_ids`` / ``tags`` replace the whole
    association set when present, so ``"tags": []`` clears every tag while
    omitting the key leaves tags untouched.
    """

    title: str | None = Field(None, min_length=1, max_length=200)
    content: str | None = None
    summary: str | None = Field(None, max_length=500)
    cover_image_url: str | None = Field(None, max_length=500)
    allow_comments: bool | None = None
    category_ids: list[int] | None = None
    tags: list[TagName] | None = None


class PostResponse(BaseModel):
    id: int
    title: str
    slug: str
    summary: str | None
    cover_image_url: str | None = None
    status: PostStatus
    published_at: datetime | None
    view_count: int
    allow_comments: bool
    is_featured: bool
    created_at: datetime
    updated_at: datetime | None = None
    author_id: int
    author: AuthorSummary | None = None
    categories: list[CategoryRef] = []
    tags: list[TagResponse] = []
    model_config = ConfigDict(from_attributes=True)


class PostDetail(PostResponse):
    content: str


# --- Comment ---

class CommentCreate(BaseModel):
    post_id: int
    parent_id: int | None = None
    content: str = Field(min_length=1, max_length=1000)


class CommentReply(BaseModel):
    content: str = Field(min_length=1, max_length=1000)


class CommentUpdate(BaseModel):
    content: str = Field(min_length=1, max_length=1000)


class CommentResponse(BaseModel):
    id: int
    content: str
    is_approved: bool
    post_id: int
    user_id: int
    parent_id: int | None = None
    created_at: datetime
    updated_at: datetime | None = None
    author: AuthorSummary | None = None
    model_config = ConfigDict(from_attributes=True)


# --- Pagination ---

class PaginatedResponse(BaseModel):
    items: list[PostResponse]
    total: int
    page: int
    page_size: int
    pages: int


# --- Metrics ---

class MetricsResponse(BaseModel):
    total_posts: int
    published_posts: int
    total_comments: int
    pending_comments: int
    total_users: int
    total_categories: int
    total_tags: int
    avg_comments_per_post: float
    cache_info: dict = {}
