from fastapi import APIRouter, Depends, Body, Query
from typing import Optional
import logging

from wallet_ledger.config import settings
from wallet_ledger.handlers.trust_handler import TrustHandler
from wallet_ledger.schemas.trust_schema import (
    TrustRequestCreate, TrustRelationshipResponse, TrustRelationshipListResponse
)
from wallet_ledger.services.trust_service import TrustService
from wallet_ledger.services.wallet_service import WalletService
from wallet_ledger.services.event_service import EventService
from wallet_ledger.repositories.trust_repo import TrustRepository
from wallet_ledger.repositories.wallet_repo import WalletRepository
from wallet_ledger.repositories.event_repo import EventRepository
from wallet_ledger.database import get_db_client
from wallet_ledger.utilities.auth_middleware import get_wallet_id

# Setup router
router = APIRouter(
    prefix="/trust_relationships",
    tags=["Trust Relationships"],
    responses={404: {"description": "Not found"}},
)

logger = logging.getLogger(__name__)


def get_trust_handler(db_client=Depends(get_db_client)) -> TrustHandler:
    """Dependency to get the trust handler with all required dependencies."""
    trust_repo = TrustRepository(db_client)
    wallet_repo = WalletRepository(db_client)
    event_repo = EventRepository(db_client)

    wallet_service = WalletService(wallet_repo, trust_repo)
    trust_service = TrustService(trust_repo, wallet_service)
    event_service = EventService(event_repo)

    return TrustHandler(
        trust_service=trust_service,
        wallet_service=wallet_service,
        event_service=event_service
    )


@router.get("", response_model=TrustRelationshipListResponse)
async def get_trust_relationships(
    state: Optional[str] = Query(None, description="Filter by state"),
    type: Optional[str] = Query(None, description="Filter by trust type"),
    request_type: Optional[str] = Query(None, description="Filter by request type"),
    offset: int = Query(0, ge=0, description="Number of relationships to skip"),
    limit: int = Query(settings.default_page_limit, ge=1, description="Maximum number of relationships"),
    sort_by: str = Query("created_at", description="Field to sort by"),
    order: str = Query("desc", description="asc or desc"),
    search: Optional[str] = Query(None, description="Substring of a wallet name"),
    exclude_managed: bool = Query(False, description="Leave out manage and yield relationships"),
    wallet_id: str = Depends(get_wallet_id),
    trust_handler: TrustHandler = Depends(get_trust_handler)
) -> TrustRelationshipListResponse:
    """
    List trust relationships of the logged-in wallet and the wallets it manages.
    """
    result = await trust_handler.get_trust_relationships(
        wallet_id,
        state=state,
        type=type,
        request_type=request_type,
        offset=offset,
        limit=limit,
        sort_by=sort_by,
        order=order,
        search=search,
        exclude_managed=exclude_managed
    )
    return TrustRelationshipListResponse(**result)


@router.post("", response_model=TrustRelationshipResponse, status_code=202)
async def create_trust_relationship(
    trust_request: TrustRequestCreate = Body(...),
    wallet_id: str = Depends(get_wallet_id),
    trust_handler: TrustHandler = Depends(get_trust_handler)
) -> TrustRelationshipResponse:
    """
    Request trust from another wallet.

    Args:
        trust_request: Request type, requestee and optional requester
        wallet_id: The authenticated wallet
        trust_handler: The trust handler

    Returns:
        The relationship in state requested
    """
    result = await trust_handler.create_trust_relationship(
        login_wallet_id=wallet_id,
        trust_request_type=trust_request.trust_request_type,
        requestee_wallet=trust_request.requestee_wallet,
        requester_wallet=trust_request.requester_wallet
    )
    return TrustRelationshipResponse(**result)


@router.get("/{trust_relationship_id}", response_model=TrustRelationshipResponse)
async def get_trust_relationship(
    trust_relationship_id: str,
    wallet_id: str = Depends(get_wallet_id),
    trust_handler: TrustHandler = Depends(get_trust_handler)
) -> TrustRelationshipResponse:
    result = await trust_handler.get_trust_relationship(wallet_id, trust_relationship_id)
    return TrustRelationshipResponse(**result)


@router.post("/{trust_relationship_id}/accept", response_model=TrustRelationshipResponse)
async def accept_trust_relationship(
    trust_relationship_id: str,
    wallet_id: str = Depends(get_wallet_id),
    trust_handler: TrustHandler = Depends(get_trust_handler)
) -> TrustRelationshipResponse:
    result = await trust_handler.accept_trust_relationship(wallet_id, trust_relationship_id)
    return TrustRelationshipResponse(**result)


@router.post("/{trust_relationship_id}/decline", response_model=TrustRelationshipResponse)
async def decline_trust_relationship(
    trust_relationship_id: str,
    wallet_id: str = Depends(get_wallet_id),
    trust_handler: TrustHandler = Depends(get_trust_handler)
) -> TrustRelationshipResponse:
    result = await trust_handler.decline_trust_relationship(wallet_id, trust_relationship_id)
    return TrustRelationshipResponse(**result)


@router.delete("/{trust_relationship_id}", response_model=TrustRelationshipResponse)
async def cancel_trust_relationship(
    trust_relationship_id: str,
    wallet_id: str = Depends(get_wallet_id),
    trust_handler: TrustHandler = Depends(get_trust_handler)
) -> TrustRelationshipResponse:
    """Cancel a relationship the logged-in wallet originated."""
    result = await trust_handler.cancel_trust_relationship(wallet_id, trust_relationship_id)
    return TrustRelationshipResponse(**result)
