from pymongo import ASCENDING, IndexModel

from wallet_ledger.repositories.base_repo import BaseRepository


class TokenRepository(BaseRepository):
    """
    Repository for token operations in MongoDB.
    Handles CRUD operations for the tokens collection.
    """

    collection_attr = "tokens_collection"
    entity_name = "token"

    async def create_indexes(self):
        """Create required indexes for the tokens collection"""
        indexes = [
            IndexModel([("wallet_id", ASCENDING), ("transfer_pending", ASCENDING), ("created_at", ASCENDING)]),
            IndexModel([("transfer_id", ASCENDING)], sparse=True),
        ]
        await self.collection.create_indexes(indexes)
