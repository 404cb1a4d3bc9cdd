"""User router for staff administration."""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.database import get_db
from ..core.dependencies import AdminAuth
from ..core.exceptions import ProblemDetailsException, unexpected_error
from ..models.user import UserRole
from ..schemas.user import ListUsersResponse, UpdateUserRequest, User
from ..services.user_service import UserService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/users", tags=["users"])

DB_DEPENDENCY = Depends(get_db)


def _convert_user_to_schema(user_model) -> User:
    """Convert user model to schema."""
    return User(
        id=str(user_model.id),
        email=user_model.email,
        first_name=user_model.first_name,
        last_name=user_model.last_name,
        full_name=user_model.full_name,
        phone_number=user_model.phone_number,
        role=user_model.role,
        created_at=user_model.created_at
    )


@router.put("/{user_id}", response_model=User)
async def update_user(
    user_id: UUID,
    request: UpdateUserRequest,
    db: AsyncSession = DB_DEPENDENCY,
    admin: dict = AdminAuth,
) -> JSONResponse:
    """
    Update a user's name, phone number and role.

    The full name is recomputed from the first and last names.
    """
    user_service = UserService(db)

    try:
        user = await user_service.update_user(user_id, request)

        logger.info(
            "User updated by admin",
            extra={"user_id": str(user_id), "admin_id": admin["user_id"], "role": user.role}
        )

        return JSONResponse(status_code=200, content=_convert_user_to_schema(user).model_dump(mode="json"))

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise unexpected_error("user update", e, user_id=str(user_id)) from e


@router.get("", response_model=ListUsersResponse)
async def list_users(
    role: Optional[UserRole] = Query(None, description="Filter by role"),
    cursor: Optional[str] = Query(None, description="Pagination cursor"),
    limit: int = Query(50, ge=1, le=100, description="Number of items to return"),
    db: AsyncSession = DB_DEPENDENCY,
    _admin: dict = AdminAuth,
) -> JSONResponse:
    """List users with cursor-based pagination."""
    user_service = UserService(db)

    try:
        users, next_cursor = await user_service.list_users(role=role, cursor=cursor, limit=limit)
        response_data = ListUsersResponse(
            items=[_convert_user_to_schema(user) for user in users],
            next_cursor=next_cursor
        )
        return JSONResponse(status_code=200, content=response_data.model_dump(mode="json"))

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise unexpected_error("user listing", e) from e
