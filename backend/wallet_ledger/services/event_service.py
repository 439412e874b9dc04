from typing import Dict, Any, List, Optional
from datetime import datetime, timezone
import logging

from wallet_ledger.repositories.event_repo import EventRepository
from wallet_ledger.utilities.filters import And, Eq, Gte

logger = logging.getLogger(__name__)


class EventService:
    """
    Service recording state-transition events for audit.
    Each affected wallet gets its own event record.
    """

    def __init__(self, event_repository: EventRepository):
        """
        Initialize with event repository.

        Args:
            event_repository: Repository for event data access
        """
        self.event_repository = event_repository

    async def log_event(
        self,
        wallet_id: str,
        type: str,
        payload: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        Record an event against a wallet.

        Args:
            wallet_id: The wallet the event concerns
            type: Event type, e.g. trust_request_granted
            payload: Event details

        Returns:
            The stored event
        """
        event = await self.event_repository.create({
            "wallet_id": wallet_id,
            "type": type,
            "payload": payload or {},
            "created_at": datetime.now(timezone.utc)
        })
        logger.info(f"Event {type} recorded for wallet {wallet_id}")
        return event

    async def get_events(
        self,
        wallet_id: str,
        since: Optional[datetime] = None,
        limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        """Get a wallet's events, newest first."""
        filter_ = And(
            Eq("wallet_id", wallet_id),
            Gte("created_at", since) if since else None
        )
        return await self.event_repository.get_by_filter(
            filter_,
            limit=limit,
            sort_by="created_at",
            order="desc"
        )
