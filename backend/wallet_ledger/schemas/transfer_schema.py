from pydantic import BaseModel, Field, validator, model_validator
from typing import Optional, Dict, Any, List
from datetime import datetime
from uuid import UUID

from wallet_ledger.config import settings


class BundleParameters(BaseModel):
    bundle_size: int = Field(
        ...,
        description="Number of tokens to transfer",
        ge=1,
        le=settings.max_bundle_size
    )


class TransferCreateRequest(BaseModel):
    """Request model for sending tokens, either named or as a bundle"""
    tokens: Optional[List[UUID]] = Field(None, description="Explicit token uuids to transfer")
    bundle: Optional[BundleParameters] = Field(None, description="Transfer a number of tokens instead")
    sender_wallet: str = Field(..., description="Sender wallet id or name")
    receiver_wallet: str = Field(..., description="Receiver wallet id or name")
    claim: bool = Field(False, description="Mark the transfer as a claim")

    model_config = {"populate_by_name": True}

    @validator('tokens')
    def validate_tokens(cls, v):
        if v is not None and len(v) != len(set(v)):
            raise ValueError('tokens must not contain duplicate uuids')
        return v

    @model_validator(mode='after')
    def validate_tokens_or_bundle(self):
        if self.tokens is None and self.bundle is None:
            raise ValueError('One of tokens or bundle is required')
        if self.tokens is not None and self.bundle is not None:
            raise ValueError('Cannot provide both tokens and bundle')
        return self


class TransferFulfillRequest(BaseModel):
    """Request model for fulfilling an open transfer"""
    tokens: Optional[List[UUID]] = Field(None, description="Explicit token uuids to fulfil with")
    implicit: Optional[bool] = Field(None, description="Let the ledger choose the tokens")

    @validator('tokens')
    def validate_tokens(cls, v):
        if v is not None and len(v) != len(set(v)):
            raise ValueError('tokens must not contain duplicate uuids')
        return v

    @model_validator(mode='after')
    def validate_tokens_or_implicit(self):
        if self.tokens is None and not self.implicit:
            raise ValueError('One of implicit or tokens is required')
        if self.tokens is not None and self.implicit:
            raise ValueError('Cannot provide both implicit and tokens')
        return self


class TransferResponse(BaseModel):
    id: str = Field(..., description="Transfer id")
    originator_wallet_id: str = Field(..., description="Wallet that issued the transfer")
    sender_wallet_id: str = Field(..., description="Wallet giving the tokens")
    receiver_wallet_id: str = Field(..., description="Wallet receiving the tokens")
    originator_wallet: Optional[str] = Field(None, description="Originator wallet name")
    sender_wallet: Optional[str] = Field(None, description="Sender wallet name")
    receiver_wallet: Optional[str] = Field(None, description="Receiver wallet name")
    state: str = Field(..., description="requested, pending, completed, cancelled or rejected")
    parameters: Dict[str, Any] = Field(..., description="Named tokens or bundle size")
    claim: bool = Field(False, description="Whether the transfer was a claim")
    created_at: datetime = Field(..., description="When the transfer was created")
    closed_at: Optional[datetime] = Field(None, description="When the transfer left the open states")


class TransferListResponse(BaseModel):
    transfers: List[TransferResponse] = Field(..., description="Page of transfers")
    count: int = Field(..., description="Total number of matching transfers")
