from pydantic import BaseModel, Field, validator
from typing import Optional, Dict, Any, List
from datetime import datetime


class WalletCreateRequest(BaseModel):
    wallet: str = Field(..., description="Name of the new managed wallet")

    @validator('wallet')
    def validate_wallet(cls, v):
        if not v or not v.strip():
            raise ValueError('Wallet name cannot be empty')
        return v.strip()


class WalletResponse(BaseModel):
    id: str = Field(..., description="Wallet id")
    name: str = Field(..., description="Unique wallet name")
    created_at: Optional[datetime] = Field(None, description="When the wallet was created")


class WalletListResponse(BaseModel):
    wallets: List[WalletResponse] = Field(..., description="The wallet and the wallets it manages")
    count: int = Field(..., description="Total number of matching wallets")


class EventResponse(BaseModel):
    id: str = Field(..., description="Event id")
    wallet_id: str = Field(..., description="Wallet the event concerns")
    type: str = Field(..., description="Event type")
    payload: Dict[str, Any] = Field(default_factory=dict, description="Event details")
    created_at: datetime = Field(..., description="When the event was recorded")


class EventListResponse(BaseModel):
    events: List[EventResponse] = Field(..., description="Events, newest first")
