from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from blog_api.database import get_db
from blog_api.dependencies import require_admin
from blog_api.models import User
from blog_api.schemas import CategoryCreate, CategoryResponse, CategoryUpdate, CategoryWithCount
from blog_api.services import taxonomy_service

router = APIRouter(prefix="/api/v1/categories", tags=["categories"])


@router.get("", response_model=list[CategoryResponse])
async def list_categories(db: AsyncSession = Depends(get_db)):
    return await taxonomy_service.list_categories(db)


@router.get("/with-post-count", response_model=list[CategoryWithCount])
async def list_categories_with_post_count(db: AsyncSession = Depends(get_db)):
    return await taxonomy_service.list_categories_with_post_count(db)


@router.get("/slug/{slug}", response_model=CategoryResponse)
async def get_category_by_slug(slug: str, db: AsyncSession = Depends(get_db)):
    return await taxonomy_service.get_category_by_slug(db, slug)


@router.get("/{category_id}", response_model=CategoryResponse)
async def get_category(category_id: int, db: AsyncSession = Depends(get_db)):
    return await taxonomy_service.get_category(db, category_id)


@router.post("", status_code=201, response_model=CategoryResponse)
async def create_category(
    data: CategoryCreate,
    _: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await taxonomy_service.create_category(db, data)


@router.put("/{category_id}", response_model=CategoryResponse)
async def update_category(
    category_id: int,
    data: CategoryUpdate,
    _: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await taxonomy_service.update_category(db, category_id, data)


@router.delete("/{category_id}", status_code=204)
async def delete_category(
    category_id: int,
    _: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    await taxonomy_service.delete_category(db, category_id)
