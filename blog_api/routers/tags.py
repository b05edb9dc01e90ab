from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from blog_api.database import get_db
from blog_api.dependencies import require_admin
from blog_api.models import User
from blog_api.schemas import TagCreate, TagResponse, TagUpdate, TagWithCount
from blog_api.services import taxonomy_service

router = APIRouter(prefix="/api/v1/tags", tags=["tags"])


@router.get("", response_model=list[TagResponse])
async def list_tags(db: AsyncSession = Depends(get_db)):
    return await taxonomy_service.list_tags(db)


@router.get("/with-post-count", response_model=list[TagWithCount])
async def list_tags_with_post_count(db: AsyncSession = Depends(get_db)):
    return await taxonomy_service.list_tags_with_post_count(db)


@router.get("/popular", response_model=list[TagWithCount])
async def list_popular_tags(
    count: int | None = Query(None, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    return await taxonomy_service.list_popular_tags(db, count)


@router.get("/slug/{slug}", response_model=TagResponse)
async def get_tag_by_slug(slug: str, db: AsyncSession = Depends(get_db)):
    return await taxonomy_service.get_tag_by_slug(db, slug)


@router.get("/{tag_id}", response_model=TagResponse)
async def get_tag(tag_id: int, db: AsyncSession = Depends(get_db)):
    return await taxonomy_service.get_tag(db, tag_id)


@router.post("", status_code=201, response_model=TagResponse)
async def create_tag(
    data: TagCreate,
    _: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await taxonomy_service.create_tag(db, data)


@router.put("/{tag_id}", response_model=TagResponse)
async def update_tag(
    tag_id: int,
    data: TagUpdate,
    _: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await taxonomy_service.update_tag(db, tag_id, data)


@router.delete("/{tag_id}", status_code=204)
async def delete_tag(
    tag_id: int,
    _: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    await taxonomy_service.delete_tag(db, tag_id)
