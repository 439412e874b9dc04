from typing import Optional, Dict, Any
import logging
from pymongo import ASCENDING, IndexModel

from wallet_ledger.repositories.base_repo import BaseRepository

logger = logging.getLogger(__name__)


class WalletRepository(BaseRepository):
    """
    Repository for wallet operations in MongoDB.
    Handles CRUD operations for the wallets collection.
    """

    collection_attr = "wallets_collection"
    entity_name = "wallet"

    async def create_indexes(self):
        """Create required indexes for the wallets collection"""
        indexes = [
            IndexModel([("name", ASCENDING)], unique=True),
            IndexModel([("created_at", ASCENDING)]),
        ]
        await self.collection.create_indexes(indexes)

    async def get_by_name(self, name: str) -> Optional[Dict[str, Any]]:
        """
        Get a wallet by its unique name.

        Args:
            name: The wallet name

        Returns:
            Wallet document or None if not found
        """
        try:
            wallet = await self.collection.find_one({"name": name})
            return self._to_entity(wallet)
        except Exception as e:
            logger.error(f"Error getting wallet by name: {str(e)}")
            raise
