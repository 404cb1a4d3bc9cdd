"""Replay of stored responses for requests carrying an Idempotency-Key header."""

import logging
from typing import Any, Awaitable, Callable, Optional

from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import ProblemDetailsException
from ..services.idempotency_service import IdempotencyService

logger = logging.getLogger(__name__)

Operation = Callable[[], Awaitable[tuple[int, Any]]]


def _response(status_code: int, content: Any) -> JSONResponse:
    media_type = "application/problem+json" if status_code >= 400 else "application/json"
    return JSONResponse(status_code=status_code, content=content, media_type=media_type)


async def handle_idempotent_operation(
    operation: str,
    idempotency_key: Optional[str],
    request_body: dict[str, Any],
    operation_func: Operation,
    db: AsyncSession,
) -> JSONResponse:
    """
    Run ``operation_func`` once per idempotency key.

    Without a key the operation simply runs. With a key, a repeated request
    with the same body gets the stored response, success or problem, and a
    different body is rejected with 422.

    Args:
        operation: Name the key is scoped to
        idempotency_key: Value of the Idempotency-Key header, if any
        request_body: JSON-serialisable request body
        operation_func: Coroutine returning (status_code, response_body)
        db: Request database session
    """
    if idempotency_key is None:
        status_code, response_body = await operation_func()
        return _response(status_code, response_body)

    idempotency_service = IdempotencyService(db)

    cached_response = await idempotency_service.check_idempotency(
        idempotency_key=idempotency_key,
        operation=operation,
        request_body=request_body
    )
    if cached_response:
        status_code, response_body = cached_response
        return _response(status_code, response_body)

    try:
        status_code, response_body = await operation_func()

    except ProblemDetailsException as e:
        # 5xx problems are transient and must not be replayed
        if e.status_code < 500:
            await db.rollback()
            await idempotency_service.store_response(
                idempotency_key=idempotency_key,
                operation=operation,
                request_body=request_body,
                status_code=e.status_code,
                response_body=e.problem_details
            )
        raise

    await idempotency_service.store_response(
        idempotency_key=idempotency_key,
        operation=operation,
        request_body=request_body,
        status_code=status_code,
        response_body=response_body
    )
    return _response(status_code, response_body)
