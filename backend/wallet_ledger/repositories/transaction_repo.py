from pymongo import ASCENDING, IndexModel

from wallet_ledger.repositories.base_repo import BaseRepository


class TransactionRepository(BaseRepository):
    """
    Repository for token movement records in MongoDB.
    One document per token moved by a completed transfer.
    """

    collection_attr = "transaction_collection"
    entity_name = "transaction"

    async def create_indexes(self):
        """Create required indexes for the transactions collection"""
        indexes = [
            IndexModel([("transfer_id", ASCENDING)]),
            IndexModel([("token_id", ASCENDING), ("processed_at", ASCENDING)]),
        ]
        await self.collection.create_indexes(indexes)
