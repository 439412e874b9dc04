from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging

from wallet_ledger.api import (
    trust_router,
    transfer_router,
    token_router,
    wallet_router,
    event_router,
)
from wallet_ledger.config import settings
from wallet_ledger.utilities.auth_middleware import AuthMiddleware

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)


# Define lifespan context manager
@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: create the ledger indexes
    from wallet_ledger.database import get_db_client
    from wallet_ledger.repositories.wallet_repo import WalletRepository
    from wallet_ledger.repositories.trust_repo import TrustRepository
    from wallet_ledger.repositories.token_repo import TokenRepository
    from wallet_ledger.repositories.transfer_repo import TransferRepository
    from wallet_ledger.repositories.transaction_repo import TransactionRepository
    from wallet_ledger.repositories.event_repo import EventRepository

    db_client = get_db_client()

    for repository_class in (
        WalletRepository,
        TrustRepository,
        TokenRepository,
        TransferRepository,
        TransactionRepository,
        EventRepository,
    ):
        try:
            await repository_class(db_client).create_indexes()
            logging.info(f"{repository_class.entity_name} indexes created successfully")
        except Exception as e:
            logging.error(f"Error creating {repository_class.entity_name} indexes: {e}")

    yield

    # Shutdown: Clean up resources
    from wallet_ledger.database import db_client
    if db_client:
        db_client.close()
        logging.info("Database connection closed")


# Create FastAPI app with lifespan
app = FastAPI(
    title="Wallet Ledger API",
    debug=settings.debug,
    lifespan=lifespan
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render validation failures as 422 with a flat message next to the detail list."""
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path"))
        messages.append(f"{location}: {error.get('msg')}" if location else error.get("msg", ""))
    message = "; ".join(messages)
    logging.getLogger(__name__).debug(f"Validation failed for {request.url.path}: {message}")
    return JSONResponse(
        status_code=422,
        content={"message": message, "detail": jsonable_encoder(exc.errors())}
    )


# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Add authentication middleware
app.add_middleware(AuthMiddleware)

# Include API routers
api_routers = [
    wallet_router,
    trust_router,
    transfer_router,
    token_router,
    event_router,
]

for router in api_routers:
    app.include_router(router)
