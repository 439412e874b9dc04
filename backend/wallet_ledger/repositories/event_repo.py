from pymongo import ASCENDING, DESCENDING, IndexModel

from wallet_ledger.repositories.base_repo import BaseRepository


class EventRepository(BaseRepository):
    """
    Repository for audit events in MongoDB.
    Events are append-only: nothing here updates or deletes them.
    """

    collection_attr = "events_collection"
    entity_name = "event"

    async def create_indexes(self):
        """Create required indexes for the events collection"""
        indexes = [
            IndexModel([("wallet_id", ASCENDING), ("created_at", DESCENDING)]),
            IndexModel([("type", ASCENDING)]),
        ]
        await self.collection.create_indexes(indexes)
