"""User service: booking customers and staff administration."""

import logging
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import NotFoundError
from ..models.user import User, UserRole
from ..schemas.booking import CustomerInfo
from ..schemas.user import UpdateUserRequest

logger = logging.getLogger(__name__)


def full_name(first_name: str, last_name: str) -> str:
    return f"{first_name.strip()} {last_name.strip()}".strip()


class UserService:
    """Service for user-related operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_user_by_id(self, user_id: UUID) -> Optional[User]:
        stmt = select(User).where(User.id == user_id)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_user_by_email(self, email: str) -> Optional[User]:
        stmt = select(User).where(User.email == email.lower())
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_user_by_id_or_raise(self, user_id: UUID) -> User:
        user = await self.get_user_by_id(user_id)
        if not user:
            logger.warning("User not found", extra={"user_id": str(user_id)})
            raise NotFoundError(resource_type="user", resource_id=str(user_id))
        return user

    async def get_or_create_customer(self, customer: CustomerInfo) -> User:
        """
        Find the user with the customer's email or create one with the customer role.

        Joins the caller's transaction: the new row is flushed, not committed.
        Existing users keep their names and role; a missing phone number is filled in.
        """
        user = await self.get_user_by_email(customer.email)
        if user:
            if customer.phone_number and not user.phone_number:
                user.phone_number = customer.phone_number
            return user

        user = User(
            email=customer.email.lower(),
            first_name=customer.first_name.strip(),
            last_name=customer.last_name.strip(),
            full_name=full_name(customer.first_name, customer.last_name),
            phone_number=customer.phone_number,
            role=UserRole.CUSTOMER,
        )
        try:
            async with self.db.begin_nested():
                self.db.add(user)
        except IntegrityError:
            # Created by a concurrent booking with the same email
            user = await self.get_user_by_email(customer.email)
            if user is None:
                raise

        logger.info("Customer resolved", extra={"user_id": str(user.id)})
        return user

    async def update_user(self, user_id: UUID, request: UpdateUserRequest) -> User:
        """
        Update a user's names, role and phone number.

        ``full_name`` is recomputed from the new names.

        Raises:
            NotFoundError: If user not found
        """
        user = await self.get_user_by_id_or_raise(user_id)

        user.first_name = request.first_name
        user.last_name = request.last_name
        user.full_name = full_name(request.first_name, request.last_name)
        user.role = request.role
        if "phone_number" in request.model_fields_set:
            user.phone_number = request.phone_number

        await self.db.commit()
        await self.db.refresh(user)

        logger.info(
            "User updated",
            extra={"user_id": str(user_id), "role": user.role}
        )
        return user

    async def list_users(
        self,
        role: Optional[UserRole] = None,
        cursor: Optional[str] = None,
        limit: int = 50,
    ) -> tuple[list[User], Optional[str]]:
        """List users, optionally by role, with cursor-based pagination."""
        stmt = select(User)
        if role:
            stmt = stmt.where(User.role == role)
        if cursor:
            try:
                stmt = stmt.where(User.id > UUID(cursor))
            except ValueError:
                logger.warning("Invalid cursor provided in user listing", extra={"cursor": cursor})

        stmt = stmt.order_by(User.id).limit(limit + 1)
        users = list((await self.db.execute(stmt)).scalars())

        next_cursor = None
        if len(users) > limit:
            users = users[:limit]
            next_cursor = str(users[-1].id)

        return users, next_cursor
