from fastapi import APIRouter, Depends, Body, Query, Response
from typing import Optional, List
import logging

from wallet_ledger.config import settings
from wallet_ledger.handlers.transfer_handler import TransferHandler
from wallet_ledger.schemas.transfer_schema import (
    TransferCreateRequest, TransferFulfillRequest,
    TransferResponse, TransferListResponse
)
from wallet_ledger.schemas.token_schema import TokenResponse
from wallet_ledger.services.transfer_service import TransferService
from wallet_ledger.services.token_service import TokenService
from wallet_ledger.services.trust_service import TrustService
from wallet_ledger.services.wallet_service import WalletService
from wallet_ledger.services.event_service import EventService
from wallet_ledger.repositories.transfer_repo import TransferRepository
from wallet_ledger.repositories.token_repo import TokenRepository
from wallet_ledger.repositories.transaction_repo import TransactionRepository
from wallet_ledger.repositories.trust_repo import TrustRepository
from wallet_ledger.repositories.wallet_repo import WalletRepository
from wallet_ledger.repositories.event_repo import EventRepository
from wallet_ledger.database import get_db_client
from wallet_ledger.utilities.auth_middleware import get_wallet_id
from wallet_ledger.utilities.enums import TransferState

# Setup router
router = APIRouter(
    prefix="/transfers",
    tags=["Transfers"],
    responses={404: {"description": "Not found"}},
)

logger = logging.getLogger(__name__)


def get_transfer_handler(db_client=Depends(get_db_client)) -> TransferHandler:
    """Dependency to get the transfer handler with all required dependencies."""
    trust_repo = TrustRepository(db_client)
    wallet_repo = WalletRepository(db_client)

    wallet_service = WalletService(wallet_repo, trust_repo)
    trust_service = TrustService(trust_repo, wallet_service)
    token_service = TokenService(
        TokenRepository(db_client),
        TransactionRepository(db_client),
        wallet_service
    )
    transfer_service = TransferService(
        TransferRepository(db_client),
        token_service,
        trust_service,
        wallet_service
    )

    return TransferHandler(
        transfer_service=transfer_service,
        wallet_service=wallet_service,
        event_service=EventService(EventRepository(db_client))
    )


@router.get("", response_model=TransferListResponse)
async def get_transfers(
    state: Optional[str] = Query(None, description="Filter by transfer state"),
    wallet: Optional[str] = Query(None, description="Narrow to one managed wallet, by id or name"),
    start: int = Query(1, description="1-based position of the first transfer"),
    limit: int = Query(settings.default_page_limit, ge=1, description="Maximum number of transfers"),
    wallet_id: str = Depends(get_wallet_id),
    transfer_handler: TransferHandler = Depends(get_transfer_handler)
) -> TransferListResponse:
    result = await transfer_handler.get_transfers(
        wallet_id, state=state, wallet=wallet, start=start, limit=limit
    )
    return TransferListResponse(**result)


@router.post("", response_model=TransferResponse)
async def create_transfer(
    response: Response,
    transfer_request: TransferCreateRequest = Body(...),
    wallet_id: str = Depends(get_wallet_id),
    transfer_handler: TransferHandler = Depends(get_transfer_handler)
) -> TransferResponse:
    """
    Send tokens from one wallet to another.

    Answers 201 when the tokens moved and 202 when the transfer
    waits for the other side (pending or requested).

    Args:
        response: Response used to set the status code
        transfer_request: Tokens or bundle, sender, receiver and claim flag
        wallet_id: The authenticated wallet
        transfer_handler: The transfer handler

    Returns:
        The transfer
    """
    result = await transfer_handler.create_transfer(
        login_wallet_id=wallet_id,
        sender_wallet=transfer_request.sender_wallet,
        receiver_wallet=transfer_request.receiver_wallet,
        tokens=[str(token) for token in transfer_request.tokens] if transfer_request.tokens is not None else None,
        bundle_size=transfer_request.bundle.bundle_size if transfer_request.bundle else None,
        claim=transfer_request.claim
    )
    response.status_code = 201 if result["state"] == TransferState.completed else 202
    return TransferResponse(**result)


@router.get("/{transfer_id}", response_model=TransferResponse)
async def get_transfer(
    transfer_id: str,
    wallet_id: str = Depends(get_wallet_id),
    transfer_handler: TransferHandler = Depends(get_transfer_handler)
) -> TransferResponse:
    result = await transfer_handler.get_transfer(wallet_id, transfer_id)
    return TransferResponse(**result)


@router.get("/{transfer_id}/tokens", response_model=List[TokenResponse])
async def get_transfer_tokens(
    transfer_id: str,
    start: int = Query(1, description="1-based position of the first token"),
    limit: int = Query(settings.default_page_limit, ge=1, description="Maximum number of tokens"),
    wallet_id: str = Depends(get_wallet_id),
    transfer_handler: TransferHandler = Depends(get_transfer_handler)
) -> List[TokenResponse]:
    """Tokens moved by a completed transfer, or held by an open one."""
    tokens = await transfer_handler.get_transfer_tokens(wallet_id, transfer_id, start=start, limit=limit)
    return [TokenResponse(**token) for token in tokens]


@router.post("/{transfer_id}/accept", response_model=TransferResponse)
async def accept_transfer(
    transfer_id: str,
    wallet_id: str = Depends(get_wallet_id),
    transfer_handler: TransferHandler = Depends(get_transfer_handler)
) -> TransferResponse:
    result = await transfer_handler.accept_transfer(wallet_id, transfer_id)
    return TransferResponse(**result)


@router.post("/{transfer_id}/decline", response_model=TransferResponse)
async def decline_transfer(
    transfer_id: str,
    wallet_id: str = Depends(get_wallet_id),
    transfer_handler: TransferHandler = Depends(get_transfer_handler)
) -> TransferResponse:
    result = await transfer_handler.decline_transfer(wallet_id, transfer_id)
    return TransferResponse(**result)


@router.post("/{transfer_id}/fulfill", response_model=TransferResponse)
async def fulfill_transfer(
    transfer_id: str,
    fulfill_request: TransferFulfillRequest = Body(...),
    wallet_id: str = Depends(get_wallet_id),
    transfer_handler: TransferHandler = Depends(get_transfer_handler)
) -> TransferResponse:
    """Complete an open transfer with explicit tokens or implicitly."""
    result = await transfer_handler.fulfill_transfer(
        wallet_id,
        transfer_id,
        tokens=[str(token) for token in fulfill_request.tokens] if fulfill_request.tokens is not None else None,
        implicit=bool(fulfill_request.implicit)
    )
    return TransferResponse(**result)


@router.delete("/{transfer_id}", response_model=TransferResponse)
async def cancel_transfer(
    transfer_id: str,
    wallet_id: str = Depends(get_wallet_id),
    transfer_handler: TransferHandler = Depends(get_transfer_handler)
) -> TransferResponse:
    result = await transfer_handler.cancel_transfer(wallet_id, transfer_id)
    return TransferResponse(**result)
