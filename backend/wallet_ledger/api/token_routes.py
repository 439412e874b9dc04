from fastapi import APIRouter, Depends, Query
from typing import Optional, List
import logging

from wallet_ledger.config import settings
from wallet_ledger.schemas.token_schema import TokenResponse, TokenListResponse, TransactionResponse
from wallet_ledger.services.token_service import TokenService
from wallet_ledger.services.wallet_service import WalletService
from wallet_ledger.repositories.token_repo import TokenRepository
from wallet_ledger.repositories.transaction_repo import TransactionRepository
from wallet_ledger.repositories.trust_repo import TrustRepository
from wallet_ledger.repositories.wallet_repo import WalletRepository
from wallet_ledger.database import get_db_client
from wallet_ledger.utilities.auth_middleware import get_wallet_id

# Setup router
router = APIRouter(
    prefix="/tokens",
    tags=["Tokens"],
    responses={404: {"description": "Not found"}},
)

logger = logging.getLogger(__name__)


def get_token_service(db_client=Depends(get_db_client)) -> TokenService:
    """Dependency to get the token service with all required dependencies."""
    wallet_service = WalletService(WalletRepository(db_client), TrustRepository(db_client))
    return TokenService(
        TokenRepository(db_client),
        TransactionRepository(db_client),
        wallet_service
    )


@router.get("", response_model=TokenListResponse)
async def get_tokens(
    wallet: Optional[str] = Query(None, description="Managed wallet id or name, defaults to the logged-in wallet"),
    start: int = Query(1, description="1-based position of the first token"),
    limit: int = Query(settings.default_page_limit, ge=1, description="Maximum number of tokens"),
    wallet_id: str = Depends(get_wallet_id),
    token_service: TokenService = Depends(get_token_service)
) -> TokenListResponse:
    """
    List the tokens of the logged-in wallet or of a wallet it manages.

    Args:
        wallet: Managed wallet to list instead of the logged-in one
        start: 1-based position of the first token
        limit: Maximum number of tokens
        wallet_id: The authenticated wallet
        token_service: The token service

    Returns:
        Page of tokens with the wallet's total count
    """
    result = await token_service.get_tokens(wallet_id, wallet=wallet, start=start, limit=limit)
    return TokenListResponse(**result)


@router.get("/{token_id}", response_model=TokenResponse)
async def get_token(
    token_id: str,
    wallet_id: str = Depends(get_wallet_id),
    token_service: TokenService = Depends(get_token_service)
) -> TokenResponse:
    token = await token_service.get_token(wallet_id, token_id)
    return TokenResponse(**token)


@router.get("/{token_id}/transactions", response_model=List[TransactionResponse])
async def get_token_transactions(
    token_id: str,
    start: int = Query(1, description="1-based position of the first transaction"),
    limit: int = Query(settings.default_page_limit, ge=1, description="Maximum number of transactions"),
    wallet_id: str = Depends(get_wallet_id),
    token_service: TokenService = Depends(get_token_service)
) -> List[TransactionResponse]:
    """Movement history of a token held in the logged-in wallet's hierarchy."""
    token = await token_service.get_token(wallet_id, token_id)
    transactions = await token_service.get_transactions(token["id"], start=start, limit=limit)
    return [TransactionResponse(**transaction) for transaction in transactions]
