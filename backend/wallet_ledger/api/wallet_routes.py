from fastapi import APIRouter, Depends, Body, Query
from typing import Optional
import logging

from wallet_ledger.config import settings
from wallet_ledger.schemas.wallet_schema import WalletCreateRequest, WalletResponse, WalletListResponse
from wallet_ledger.services.wallet_service import WalletService
from wallet_ledger.services.event_service import EventService
from wallet_ledger.repositories.trust_repo import TrustRepository
from wallet_ledger.repositories.wallet_repo import WalletRepository
from wallet_ledger.repositories.event_repo import EventRepository
from wallet_ledger.database import get_db_client
from wallet_ledger.utilities.auth_middleware import get_wallet_id

# Setup router
router = APIRouter(
    prefix="/wallets",
    tags=["Wallets"],
    responses={404: {"description": "Not found"}},
)

logger = logging.getLogger(__name__)


def get_wallet_service(db_client=Depends(get_db_client)) -> WalletService:
    """Dependency to get the wallet service."""
    return WalletService(WalletRepository(db_client), TrustRepository(db_client))


def get_event_service(db_client=Depends(get_db_client)) -> EventService:
    return EventService(EventRepository(db_client))


@router.get("", response_model=WalletListResponse)
async def get_wallets(
    name: Optional[str] = Query(None, description="Substring of the wallet name"),
    offset: int = Query(0, ge=0, description="Number of wallets to skip"),
    limit: int = Query(settings.default_page_limit, ge=1, description="Maximum number of wallets"),
    wallet_id: str = Depends(get_wallet_id),
    wallet_service: WalletService = Depends(get_wallet_service)
) -> WalletListResponse:
    """List the logged-in wallet together with every wallet it manages."""
    result = await wallet_service.get_all_wallets(wallet_id, name=name, offset=offset, limit=limit)
    return WalletListResponse(**result)


@router.post("", response_model=WalletResponse, status_code=201)
async def create_wallet(
    wallet_request: WalletCreateRequest = Body(...),
    wallet_id: str = Depends(get_wallet_id),
    wallet_service: WalletService = Depends(get_wallet_service),
    event_service: EventService = Depends(get_event_service)
) -> WalletResponse:
    """
    Create a wallet managed by the logged-in wallet.

    Args:
        wallet_request: Name of the new wallet
        wallet_id: The authenticated wallet
        wallet_service: The wallet service
        event_service: The event service

    Returns:
        The new wallet
    """
    wallet = await wallet_service.add_managed_wallet(wallet_id, wallet_request.wallet)
    await event_service.log_event(
        wallet_id=wallet_id,
        type="wallet_created",
        payload={"walletId": wallet["id"], "walletName": wallet["name"]}
    )
    return WalletResponse(**wallet)


@router.get("/{target_wallet_id}", response_model=WalletResponse)
async def get_wallet(
    target_wallet_id: str,
    wallet_id: str = Depends(get_wallet_id),
    wallet_service: WalletService = Depends(get_wallet_service)
) -> WalletResponse:
    wallet = await wallet_service.get_wallet(wallet_id, target_wallet_id)
    return WalletResponse(**wallet)
