from fastapi import APIRouter, Depends, Query
from typing import Optional
from datetime import datetime
import logging

from wallet_ledger.config import settings
from wallet_ledger.schemas.wallet_schema import EventListResponse
from wallet_ledger.services.event_service import EventService
from wallet_ledger.repositories.event_repo import EventRepository
from wallet_ledger.database import get_db_client
from wallet_ledger.utilities.auth_middleware import get_wallet_id

# Setup router
router = APIRouter(
    prefix="/events",
    tags=["Events"],
)

logger = logging.getLogger(__name__)


def get_event_service(db_client=Depends(get_db_client)) -> EventService:
    """Dependency to get the event service."""
    return EventService(EventRepository(db_client))


@router.get("", response_model=EventListResponse)
async def get_events(
    since: Optional[datetime] = Query(None, description="Only events recorded at or after this time"),
    limit: int = Query(settings.default_page_limit, ge=1, description="Maximum number of events"),
    wallet_id: str = Depends(get_wallet_id),
    event_service: EventService = Depends(get_event_service)
) -> EventListResponse:
    """List the logged-in wallet's events, newest first."""
    events = await event_service.get_events(wallet_id, since=since, limit=limit)
    return EventListResponse(events=events)
