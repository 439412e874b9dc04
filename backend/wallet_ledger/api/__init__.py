from wallet_ledger.api.trust_routes import router as trust_router
from wallet_ledger.api.transfer_routes import router as transfer_router
from wallet_ledger.api.token_routes import router as token_router
from wallet_ledger.api.wallet_routes import router as wallet_router
from wallet_ledger.api.event_routes import router as event_router

__all__ = ["trust_router", "transfer_router", "token_router", "wallet_router", "event_router"]
