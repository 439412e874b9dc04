from pydantic import BaseModel, Field, validator
from typing import Optional, List
from datetime import datetime

from wallet_ledger.utilities.enums import TrustRequestType


class TrustRequestCreate(BaseModel):
    """Request model for asking another wallet for trust"""
    trust_request_type: str = Field(..., description="send, receive, manage or yield")
    requestee_wallet: str = Field(..., description="Name of the wallet asked to grant the trust")
    requester_wallet: Optional[str] = Field(
        None,
        description="Name of the wallet asking for the trust, defaults to the logged-in wallet"
    )

    @validator('trust_request_type')
    def validate_trust_request_type(cls, v):
        if v not in TrustRequestType.ALL:
            raise ValueError(f"trust_request_type must be one of: {', '.join(TrustRequestType.ALL)}")
        return v


class TrustRelationshipResponse(BaseModel):
    id: str = Field(..., description="Trust relationship id")
    type: str = Field(..., description="send or manage")
    request_type: str = Field(..., description="send, receive, manage or yield")
    state: str = Field(..., description="requested, trusted, canceled_by_target or cancelled_by_originator")
    actor_wallet_id: str = Field(..., description="Wallet granted the capability")
    target_wallet_id: str = Field(..., description="Wallet the capability acts upon")
    originator_wallet_id: str = Field(..., description="Wallet that initiated the request")
    actor_wallet: Optional[str] = Field(None, description="Actor wallet name")
    target_wallet: Optional[str] = Field(None, description="Target wallet name")
    originator_wallet: Optional[str] = Field(None, description="Originator wallet name")
    active: bool = Field(..., description="Whether the relationship is requested or trusted")
    created_at: datetime = Field(..., description="When the request was made")
    updated_at: datetime = Field(..., description="When the state last changed")


class TrustRelationshipListResponse(BaseModel):
    trust_relationships: List[TrustRelationshipResponse] = Field(..., description="Page of relationships")
    count: int = Field(..., description="Total number of matching relationships")
