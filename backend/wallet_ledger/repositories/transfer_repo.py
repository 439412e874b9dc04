from pymongo import ASCENDING, DESCENDING, IndexModel

from wallet_ledger.repositories.base_repo import BaseRepository


class TransferRepository(BaseRepository):
    """
    Repository for transfer operations in MongoDB.
    Handles CRUD operations for the transfers collection.
    """

    collection_attr = "transfers_collection"
    entity_name = "transfer"

    async def create_indexes(self):
        """Create required indexes for the transfers collection"""
        indexes = [
            IndexModel([("sender_wallet_id", ASCENDING), ("state", ASCENDING)]),
            IndexModel([("receiver_wallet_id", ASCENDING), ("state", ASCENDING)]),
            IndexModel([("originator_wallet_id", ASCENDING)]),
            IndexModel([("created_at", DESCENDING)]),
        ]
        await self.collection.create_indexes(indexes)
