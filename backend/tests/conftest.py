# conftest.py
import pytest
import pytest_asyncio
from unittest.mock import MagicMock, AsyncMock
from datetime import datetime, timedelta, timezone

from wallet_ledger.repositories.wallet_repo import WalletRepository
from wallet_ledger.repositories.trust_repo import TrustRepository
from wallet_ledger.repositories.token_repo import TokenRepository
from wallet_ledger.repositories.transfer_repo import TransferRepository
from wallet_ledger.repositories.transaction_repo import TransactionRepository
from wallet_ledger.repositories.event_repo import EventRepository
from wallet_ledger.services.wallet_service import WalletService
from wallet_ledger.services.trust_service import TrustService
from wallet_ledger.services.token_service import TokenService
from wallet_ledger.services.transfer_service import TransferService
from wallet_ledger.services.event_service import EventService
from wallet_ledger.utilities.enums import TrustRequestType, TrustState, get_trust_type_by_request_type

from mock_collection import MockCollection


# Fixed timestamp for use in tests for consistency
@pytest.fixture
def fixed_timestamp():
    """Return a fixed timestamp for testing."""
    return datetime(2025, 3, 13, 12, 0, 0, tzinfo=timezone.utc)


# In-memory database
@pytest_asyncio.fixture
async def db_client():
    """Database client whose collections live in memory, with indexes applied."""
    client = MagicMock()
    client.wallets_collection = MockCollection("wallets")
    client.trust_collection = MockCollection("trust_relationships")
    client.tokens_collection = MockCollection("tokens")
    client.transfers_collection = MockCollection("transfers")
    client.transaction_collection = MockCollection("transactions")
    client.events_collection = MockCollection("events")
    client.sessions_collection = MockCollection("sessions")

    for repository_class in (
        WalletRepository,
        TrustRepository,
        TokenRepository,
        TransferRepository,
        TransactionRepository,
        EventRepository,
    ):
        await repository_class(client).create_indexes()
    return client


@pytest.fixture
def wallet_repo(db_client):
    return WalletRepository(db_client)


@pytest.fixture
def trust_repo(db_client):
    return TrustRepository(db_client)


@pytest.fixture
def token_repo(db_client):
    return TokenRepository(db_client)


@pytest.fixture
def transfer_repo(db_client):
    return TransferRepository(db_client)


@pytest.fixture
def transaction_repo(db_client):
    return TransactionRepository(db_client)


@pytest.fixture
def event_repo(db_client):
    return EventRepository(db_client)


# Services over the in-memory database
@pytest.fixture
def wallet_service(wallet_repo, trust_repo):
    return WalletService(wallet_repo, trust_repo)


@pytest.fixture
def trust_service(trust_repo, wallet_service):
    return TrustService(trust_repo, wallet_service)


@pytest.fixture
def token_service(token_repo, transaction_repo, wallet_service):
    return TokenService(token_repo, transaction_repo, wallet_service)


@pytest.fixture
def transfer_service(transfer_repo, token_service, trust_service, wallet_service):
    return TransferService(transfer_repo, token_service, trust_service, wallet_service)


@pytest.fixture
def event_service(event_repo):
    return EventService(event_repo)


# Data builders
@pytest.fixture
def make_wallet(wallet_repo):
    """Create a wallet by name."""
    async def _make_wallet(name):
        return await wallet_repo.create({"name": name})
    return _make_wallet


@pytest.fixture
def make_trust(trust_repo):
    """Store a trust relationship directly, trusted unless told otherwise."""
    async def _make_trust(request_type, actor, target, state=TrustState.trusted, originator=None):
        now = datetime.now(timezone.utc)
        return await trust_repo.create({
            "type": get_trust_type_by_request_type(request_type),
            "request_type": request_type,
            "actor_wallet_id": actor["id"],
            "target_wallet_id": target["id"],
            "originator_wallet_id": (originator or actor)["id"],
            "state": state,
            "active": state in TrustState.ACTIVE,
            "created_at": now,
            "updated_at": now
        })
    return _make_trust


@pytest.fixture
def make_manage(make_trust):
    """Make ``manager`` control ``managed`` through a trusted manage relationship."""
    async def _make_manage(manager, managed):
        return await make_trust(TrustRequestType.manage, manager, managed)
    return _make_manage


@pytest.fixture
def make_tokens(token_repo, fixed_timestamp):
    """Issue tokens to a wallet with strictly increasing creation times."""
    counter = {"n": 0}

    async def _make_tokens(wallet, count, ids=None):
        tokens = []
        for i in range(count):
            counter["n"] += 1
            token = {
                "wallet_id": wallet["id"],
                "transfer_pending": False,
                "transfer_id": None,
                "capture_id": None,
                "created_at": fixed_timestamp + timedelta(seconds=counter["n"])
            }
            if ids:
                token["id"] = ids[i]
            tokens.append(await token_repo.create(token))
        return tokens
    return _make_tokens


# Service Mocks
@pytest.fixture
def mock_wallet_service():
    """Create mock WalletService."""
    service = MagicMock()
    service.get_by_id = AsyncMock()
    service.get_by_name = AsyncMock()
    service.get_by_id_or_name = AsyncMock()
    service.has_control_over = AsyncMock(return_value=True)
    service.get_sub_wallet_ids = AsyncMock(return_value=[])
    return service


@pytest.fixture
def mock_trust_service():
    """Create mock TrustService."""
    service = MagicMock()
    service.request_trust_from_a_wallet = AsyncMock()
    service.accept_trust_request_sent_to_me = AsyncMock()
    service.decline_trust_request_sent_to_me = AsyncMock()
    service.cancel_trust_request = AsyncMock()
    service.get_trust_relationships = AsyncMock()
    service.get_trust_relationship_by_id = AsyncMock()
    return service


@pytest.fixture
def mock_transfer_service():
    """Create mock TransferService."""
    service = MagicMock()
    service.transfer = AsyncMock()
    service.transfer_bundle = AsyncMock()
    service.accept_transfer = AsyncMock()
    service.decline_transfer = AsyncMock()
    service.cancel_transfer = AsyncMock()
    service.fulfill_transfer = AsyncMock()
    service.get_transfers = AsyncMock()
    service.get_transfer_by_id = AsyncMock()
    service.get_tokens_by_transfer_id = AsyncMock()
    return service


@pytest.fixture
def mock_event_service():
    """Create mock EventService."""
    service = MagicMock()
    service.log_event = AsyncMock()
    service.get_events = AsyncMock(return_value=[])
    return service


# Handler Mocks
@pytest.fixture
def mock_transfer_handler():
    """Create mock TransferHandler."""
    handler = MagicMock()
    handler.create_transfer = AsyncMock()
    handler.get_transfers = AsyncMock()
    handler.get_transfer = AsyncMock()
    handler.get_transfer_tokens = AsyncMock()
    handler.accept_transfer = AsyncMock()
    handler.decline_transfer = AsyncMock()
    handler.cancel_transfer = AsyncMock()
    handler.fulfill_transfer = AsyncMock()
    return handler


@pytest.fixture
def mock_trust_handler():
    """Create mock TrustHandler."""
    handler = MagicMock()
    handler.create_trust_relationship = AsyncMock()
    handler.get_trust_relationships = AsyncMock()
    handler.get_trust_relationship = AsyncMock()
    handler.accept_trust_relationship = AsyncMock()
    handler.decline_trust_relationship = AsyncMock()
    handler.cancel_trust_relationship = AsyncMock()
    return handler


@pytest.fixture
def wallet_a():
    return {"id": "wallet-a", "name": "wallet_a"}


@pytest.fixture
def wallet_b():
    return {"id": "wallet-b", "name": "wallet_b"}
