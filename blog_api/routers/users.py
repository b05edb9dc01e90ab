from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from blog_api.database import get_db
from blog_api.dependencies import get_current_user, require_admin
from blog_api.models import User
from blog_api.schemas import (
    UserCreate,
    UserDetail,
    UserResponse,
    UserRoleUpdate,
    UserStatistics,
    UserStatusUpdate,
)
from blog_api.services import user_service

router = APIRouter(prefix="/api/v1/users", tags=["users"])


@router.get("", response_model=list[UserResponse])
async def list_users(db: AsyncSession = Depends(get_db)):
    return await user_service.get_users(db)


@router.get("/username/{username}", response_model=UserDetail)
async def get_user_by_username(username: str, db: AsyncSession = Depends(get_db)):
    return await user_service.get_user_by_username(db, username)


@router.get("/{user_id}", response_model=UserDetail)
async def get_user(user_id: int, db: AsyncSession = Depends(get_db)):
    return await user_service.get_user(db, user_id)


@router.get("/{user_id}/statistics", response_model=UserStatistics)
async def get_user_statistics(
    user_id: int,
    _: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await user_service.get_user_statistics(db, user_id)


@router.post("", status_code=201, response_model=UserResponse)
async def create_user(data: UserCreate, db: AsyncSession = Depends(get_db)):
    """Register a reader account.  A ``role`` in the body is ignored."""
    return await user_service.create_user(db, data)


@router.put("/{user_id}/role", response_model=UserDetail)
async def update_user_role(
    user_id: int,
    data: UserRoleUpdate,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await user_service.update_user_role(db, user_id, data, admin)


@router.put("/{user_id}/status", response_model=UserDetail)
async def update_user_status(
    user_id: int,
    data: UserStatusUpdate,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await user_service.update_user_status(db, user_id, data, admin)
