"""FastAPI router for Courier API endpoints."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status

from courier import __version__
from courier.exceptions import NotFoundError
from courier.service import DEFAULT_HISTORY_LIMIT, ForwardingService

from .schemas import (
    DeliveryListResponse,
    HealthResponse,
    SubmitEventRequest,
    SubmitEventResponse,
)

router = APIRouter()

# Service instance (set by app lifespan)
_service: ForwardingService | None = None


def set_service(service: ForwardingService | None) -> None:
    """Set the global service instance."""
    global _service
    _service = service


async def get_service() -> ForwardingService:
    """Dependency to get the ForwardingService instance."""
    if _service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service not initialized",
        )
    return _service


ServiceDep = Annotated[ForwardingService, Depends(get_service)]


@router.get("/health", response_model=HealthResponse, tags=["system"])
async def health_check() -> HealthResponse:
    """Check service health."""
    if _service is not None:
        return HealthResponse(status="healthy", version=__version__, storage_connected=True)
    return HealthResponse(status="unhealthy", version=__version__, storage_connected=False)


@router.post(
    "/events",
    response_model=SubmitEventResponse,
    status_code=status.HTTP_202_ACCEPTED,
    tags=["events"],
)
async def submit_event(
    request: SubmitEventRequest,
    service: ServiceDep,
) -> SubmitEventResponse:
    """Accept an event for forwarding to subscribed targets.

    Delivery happens in the background; the response only says whether
    the event was stored and queued, or recognised as a duplicate.

    Args:
        request: Event fields.
        service: Injected ForwardingService.

    Returns:
        The event ID with dedupe and queue flags. Storage failures
        surface as ``StorageError`` and are rendered by the app.
    """
    result = await service.submit_event(
        account_id=request.account_id,
        event_type=request.event_type,
        source=request.source,
        payload=request.payload,
        occurred_at=request.occurred_at,
        dedupe_key=request.dedupe_key,
    )

    return SubmitEventResponse(
        event_id=result.event_id,
        deduped=result.deduped,
        queued=result.queued,
    )


@router.get(
    "/targets/{target_id}/deliveries",
    response_model=DeliveryListResponse,
    tags=["deliveries"],
)
async def list_target_deliveries(
    target_id: str,
    service: ServiceDep,
    limit: Annotated[int, Query(ge=1, le=500)] = DEFAULT_HISTORY_LIMIT,
) -> DeliveryListResponse:
    """List the most recent deliveries of a target.

    Raises:
        NotFoundError: If the target does not exist (rendered as 404).
    """
    if await service.get_target(target_id) is None:
        raise NotFoundError("target", target_id)

    deliveries = await service.list_recent_deliveries(target_id, limit=limit)

    return DeliveryListResponse(
        target_id=target_id,
        deliveries=deliveries,
        count=len(deliveries),
    )
