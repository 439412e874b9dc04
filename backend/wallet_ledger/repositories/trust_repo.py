from pymongo import ASCENDING, DESCENDING, IndexModel

from wallet_ledger.repositories.base_repo import BaseRepository


class TrustRepository(BaseRepository):
    """
    Repository for trust relationship operations in MongoDB.
    Handles CRUD operations for the trust_relationships collection.
    """

    collection_attr = "trust_collection"
    entity_name = "trust relationship"

    async def create_indexes(self):
        """Create required indexes for the trust_relationships collection"""
        indexes = [
            # At most one active relationship per actor/target/request type.
            # Backstop for the duplicate check under concurrent requests.
            IndexModel(
                [("actor_wallet_id", ASCENDING), ("target_wallet_id", ASCENDING), ("request_type", ASCENDING)],
                unique=True,
                partialFilterExpression={"active": True},
                name="active_trust_unique",
            ),
            IndexModel([("actor_wallet_id", ASCENDING), ("state", ASCENDING)]),
            IndexModel([("target_wallet_id", ASCENDING), ("state", ASCENDING)]),
            IndexModel([("originator_wallet_id", ASCENDING)]),
            IndexModel([("created_at", DESCENDING)]),
        ]
        await self.collection.create_indexes(indexes)
