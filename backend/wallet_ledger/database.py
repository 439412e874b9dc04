import logging
from motor.motor_asyncio import AsyncIOMotorClient

from wallet_ledger.config import settings

logger = logging.getLogger(__name__)


class DatabaseClient:
    """Database client for MongoDB connection and collections."""

    def __init__(self):
        """Initialize the Motor client and bind the ledger collections."""
        mongo_uri = settings.mongo_uri
        db_name = settings.mongo_db_name

        # Motor connects lazily, so this never blocks the event loop
        self.client = AsyncIOMotorClient(
            mongo_uri,
            serverSelectionTimeoutMS=settings.mongo_timeout_ms,
            tz_aware=True,
        )
        self.db = self.client[db_name]

        # Initialize collections
        self.wallets_collection = self.db["wallets"]
        self.trust_collection = self.db["trust_relationships"]
        self.tokens_collection = self.db["tokens"]
        self.transfers_collection = self.db["transfers"]
        self.transaction_collection = self.db["transactions"]
        self.events_collection = self.db["events"]
        self.sessions_collection = self.db["sessions"]

        logger.info(f"Configured MongoDB database: {db_name}")

    def get_collection(self, collection_name: str):
        """
        Get a collection by name.

        Args:
            collection_name: Name of the collection

        Returns:
            AsyncIOMotorCollection
        """
        return self.db[collection_name]

    async def ping(self) -> bool:
        """Test database connection"""
        try:
            await self.client.admin.command('ping')
            return True
        except Exception as e:
            logger.error(f"Database ping failed: {str(e)}")
            return False

    def close(self):
        """Close the MongoDB connection."""
        self.client.close()
        logger.info("MongoDB connection closed")


# Create a singleton instance
db_client = None


def get_db_client() -> DatabaseClient:
    """
    Get the database client instance.

    Returns:
        DatabaseClient instance
    """
    global db_client

    if db_client is None:
        db_client = DatabaseClient()

    return db_client
