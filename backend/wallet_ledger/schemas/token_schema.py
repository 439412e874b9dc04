from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime


class TokenResponse(BaseModel):
    id: str = Field(..., description="Token uuid")
    wallet_id: str = Field(..., description="Owning wallet")
    transfer_pending: bool = Field(False, description="Whether an open transfer holds the token")
    transfer_id: Optional[str] = Field(None, description="Transfer holding the lock")
    capture_id: Optional[str] = Field(None, description="Reference to the underlying asset")
    created_at: datetime = Field(..., description="When the token was issued")


class TokenListResponse(BaseModel):
    tokens: List[TokenResponse] = Field(..., description="Page of tokens")
    count: int = Field(..., description="Total number of tokens in the wallet")


class TransactionResponse(BaseModel):
    id: str = Field(..., description="Transaction id")
    token_id: str = Field(..., description="Token moved")
    transfer_id: str = Field(..., description="Transfer that moved it")
    source_wallet_id: str = Field(..., description="Wallet the token left")
    destination_wallet_id: str = Field(..., description="Wallet the token arrived in")
    claim: bool = Field(False, description="Whether the transfer was a claim")
    processed_at: datetime = Field(..., description="When the token moved")
