"""Product router for add-on catalogue operations."""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.database import get_db
from ..core.dependencies import AdminAuth
from ..core.exceptions import ProblemDetailsException, unexpected_error
from ..schemas.common import Money
from ..schemas.product import CreateProductRequest, ListProductsResponse, Product, UpdateProductRequest
from ..services.product_service import ProductService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/products", tags=["products"])

DB_DEPENDENCY = Depends(get_db)


def _convert_product_to_schema(product_model) -> Product:
    """Convert product model to schema."""
    return Product(
        id=str(product_model.id),
        name=product_model.name,
        description=product_model.description,
        price=Money(amount=product_model.price_amount, currency=product_model.currency),
        image_url=product_model.image_url,
        is_active=product_model.is_active,
        created_at=product_model.created_at
    )


@router.post("", response_model=Product, status_code=201)
async def create_product(
    request: CreateProductRequest,
    db: AsyncSession = DB_DEPENDENCY,
    _admin: dict = AdminAuth,
) -> JSONResponse:
    """Create an add-on product."""
    product_service = ProductService(db)

    try:
        product = await product_service.create_product(request)
        return JSONResponse(
            status_code=201,
            content=_convert_product_to_schema(product).model_dump(mode="json")
        )

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise unexpected_error("product creation", e, product_name=request.name) from e


@router.get("", response_model=ListProductsResponse)
async def list_products(
    include_inactive: bool = Query(False, description="Include retired products"),
    db: AsyncSession = DB_DEPENDENCY,
) -> JSONResponse:
    """List products by name."""
    product_service = ProductService(db)

    try:
        products = await product_service.list_products(active_only=not include_inactive)
        response_data = ListProductsResponse(items=[_convert_product_to_schema(p) for p in products])
        return JSONResponse(status_code=200, content=response_data.model_dump(mode="json"))

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise unexpected_error("product listing", e) from e


@router.patch("/{product_id}", response_model=Product)
async def update_product(
    product_id: UUID,
    request: UpdateProductRequest,
    db: AsyncSession = DB_DEPENDENCY,
    _admin: dict = AdminAuth,
) -> JSONResponse:
    """
    Update a product.

    Price changes do not affect bookings already made; they keep the unit
    price recorded at sale.
    """
    product_service = ProductService(db)

    try:
        product = await product_service.update_product(product_id, request)
        return JSONResponse(status_code=200, content=_convert_product_to_schema(product).model_dump(mode="json"))

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise unexpected_error("product update", e, product_id=str(product_id)) from e
