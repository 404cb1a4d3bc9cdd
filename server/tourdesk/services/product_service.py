"""Product service: add-ons and their assignment to tours."""

import logging
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..core.config import settings
from ..core.exceptions import ConflictError, NotFoundError
from ..models.product import Product, TourProduct
from ..schemas.product import CreateProductRequest, UpdateProductRequest
from .tour_service import TourService

logger = logging.getLogger(__name__)

ALREADY_ASSIGNED = "This product is already assigned to this tour"


class ProductService:
    """Service for product-related operations."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.tour_service = TourService(db)

    async def create_product(self, request: CreateProductRequest) -> Product:
        product = Product(
            name=request.name,
            description=request.description,
            price_amount=request.price_amount,
            currency=request.currency or settings.default_currency,
            image_url=request.image_url,
        )
        self.db.add(product)
        await self.db.commit()
        await self.db.refresh(product)

        logger.info(
            "Product created",
            extra={"product_id": str(product.id), "price_amount": product.price_amount}
        )
        return product

    async def get_product_by_id(self, product_id: UUID) -> Optional[Product]:
        stmt = select(Product).where(Product.id == product_id)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_product_by_id_or_raise(self, product_id: UUID) -> Product:
        product = await self.get_product_by_id(product_id)
        if not product:
            logger.warning("Product not found", extra={"product_id": str(product_id)})
            raise NotFoundError(resource_type="product", resource_id=str(product_id))
        return product

    async def list_products(self, active_only: bool = False) -> list[Product]:
        stmt = select(Product).order_by(Product.name)
        if active_only:
            stmt = stmt.where(Product.is_active.is_(True))
        return list((await self.db.execute(stmt)).scalars())

    async def update_product(self, product_id: UUID, request: UpdateProductRequest) -> Product:
        """Apply a partial update. Bookings keep the unit price they were sold at."""
        product = await self.get_product_by_id_or_raise(product_id)

        for field, value in request.model_dump(exclude_unset=True).items():
            setattr(product, field, value)

        await self.db.commit()
        await self.db.refresh(product)

        logger.info(
            "Product updated",
            extra={"product_id": str(product_id), "fields": sorted(request.model_fields_set)}
        )
        return product

    async def assign_product_to_tour(self, tour_id: UUID, product_id: UUID) -> TourProduct:
        """
        Offer a product with a tour.

        Raises:
            NotFoundError: If the tour or product does not exist
            ConflictError: If the product is already assigned to the tour
        """
        await self.tour_service.get_tour_by_id_or_raise(tour_id)
        await self.get_product_by_id_or_raise(product_id)

        if await self.get_assignment(tour_id, product_id):
            raise ConflictError(detail=ALREADY_ASSIGNED)

        link = TourProduct(tour_id=tour_id, product_id=product_id)
        try:
            self.db.add(link)
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            raise ConflictError(detail=ALREADY_ASSIGNED) from e

        await self.db.refresh(link, attribute_names=["product", "created_at"])

        logger.info(
            "Product assigned to tour",
            extra={"tour_id": str(tour_id), "product_id": str(product_id)}
        )
        return link

    async def remove_product_from_tour(self, tour_id: UUID, product_id: UUID) -> None:
        """
        Stop offering a product with a tour.

        Raises:
            NotFoundError: If the product is not assigned to the tour
        """
        link = await self.get_assignment(tour_id, product_id)
        if not link:
            raise NotFoundError(
                resource_type="tour product",
                detail="This product is not assigned to this tour"
            )

        await self.db.delete(link)
        await self.db.commit()

        logger.info(
            "Product removed from tour",
            extra={"tour_id": str(tour_id), "product_id": str(product_id)}
        )

    async def get_assignment(self, tour_id: UUID, product_id: UUID) -> Optional[TourProduct]:
        stmt = select(TourProduct).where(
            TourProduct.tour_id == tour_id,
            TourProduct.product_id == product_id,
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def list_tour_products(self, tour_id: UUID, active_only: bool = False) -> list[TourProduct]:
        await self.tour_service.get_tour_by_id_or_raise(tour_id)

        stmt = (
            select(TourProduct)
            .options(selectinload(TourProduct.product))
            .join(Product, TourProduct.product_id == Product.id)
            .where(TourProduct.tour_id == tour_id)
            .order_by(Product.name)
        )
        if active_only:
            stmt = stmt.where(Product.is_active.is_(True))
        return list((await self.db.execute(stmt)).scalars())
