from typing import Optional, Dict, Any, List
import logging
import uuid
from datetime import datetime, timezone
from pymongo import ASCENDING, DESCENDING, ReturnDocument

from wallet_ledger.utilities.filters import FilterLike, to_query

logger = logging.getLogger(__name__)


class BaseRepository:
    """
    Shared CRUD operations over one MongoDB collection.

    Documents are keyed by a UUID string in ``_id``; callers only ever see
    plain dicts with an ``id`` key instead.
    """

    # Attribute of the database client holding this repository's collection
    collection_attr: str = ""
    entity_name: str = "entity"

    def __init__(self, db_client):
        """
        Initialize with MongoDB client.

        Args:
            db_client: The MongoDB client with initialized collections
        """
        self.collection = getattr(db_client, self.collection_attr)

    @staticmethod
    def _to_entity(document: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        if document is None:
            return None
        document = dict(document)
        document["id"] = str(document.pop("_id"))
        return document

    @staticmethod
    def _sort_spec(sort_by: Optional[str], order: str = "asc"):
        direction = DESCENDING if str(order).lower() == "desc" else ASCENDING
        spec = []
        if sort_by:
            spec.append((sort_by, direction))
        # _id tie-break keeps pagination deterministic for equal sort keys
        spec.append(("_id", ASCENDING))
        return spec

    async def get_by_id(self, entity_id: str) -> Optional[Dict[str, Any]]:
        try:
            document = await self.collection.find_one({"_id": entity_id})
            return self._to_entity(document)
        except Exception as e:
            logger.error(f"Error getting {self.entity_name} {entity_id}: {str(e)}")
            raise

    async def get_by_filter(
        self,
        filter_: Optional[FilterLike] = None,
        offset: int = 0,
        limit: Optional[int] = None,
        sort_by: Optional[str] = "created_at",
        order: str = "asc",
    ) -> List[Dict[str, Any]]:
        """
        Find documents matching a filter tree.

        Args:
            filter_: Filter tree or raw query document
            offset: Number of matching documents to skip
            limit: Maximum number of documents to return (None for all)
            sort_by: Field to sort on
            order: "asc" or "desc"

        Returns:
            List of entity dicts
        """
        try:
            query = to_query(filter_)
            cursor = self.collection.find(query).sort(self._sort_spec(sort_by, order))
            if offset and offset > 0:
                cursor = cursor.skip(offset)
            if limit is not None:
                if limit <= 0:
                    return []
                cursor = cursor.limit(limit)
            documents = await cursor.to_list(length=None)
            return [self._to_entity(document) for document in documents]
        except Exception as e:
            logger.error(f"Error finding {self.entity_name} records: {str(e)}")
            raise

    async def count_by_filter(self, filter_: Optional[FilterLike] = None) -> int:
        try:
            return await self.collection.count_documents(to_query(filter_))
        except Exception as e:
            logger.error(f"Error counting {self.entity_name} records: {str(e)}")
            raise

    async def create(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Insert a new document, assigning an id and creation time when absent.

        Returns:
            The stored entity
        """
        document = dict(data)
        document["_id"] = str(document.pop("id", None) or uuid.uuid4())
        document.setdefault("created_at", datetime.now(timezone.utc))
        try:
            await self.collection.insert_one(document)
            logger.debug(f"{self.entity_name} inserted with ID: {document['_id']}")
            return self._to_entity(document)
        except Exception as e:
            logger.error(f"Error inserting {self.entity_name}: {str(e)}")
            raise

    async def update(self, entity: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Overwrite the given fields of the entity identified by ``entity['id']``."""
        changes = {key: value for key, value in entity.items() if key not in ("id", "_id")}
        try:
            document = await self.collection.find_one_and_update(
                {"_id": entity["id"]},
                {"$set": changes},
                return_document=ReturnDocument.AFTER,
            )
            return self._to_entity(document)
        except Exception as e:
            logger.error(f"Error updating {self.entity_name} {entity.get('id')}: {str(e)}")
            raise

    async def update_where(self, filter_: FilterLike, changes: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """
        Atomically update one document only if it still matches the filter.

        Returns:
            The updated entity, or None when nothing matched
        """
        try:
            document = await self.collection.find_one_and_update(
                to_query(filter_),
                {"$set": changes},
                return_document=ReturnDocument.AFTER,
            )
            return self._to_entity(document)
        except Exception as e:
            logger.error(f"Error conditionally updating {self.entity_name}: {str(e)}")
            raise

    async def update_many_where(self, filter_: FilterLike, changes: Dict[str, Any]) -> int:
        try:
            result = await self.collection.update_many(to_query(filter_), {"$set": changes})
            return result.modified_count
        except Exception as e:
            logger.error(f"Error updating {self.entity_name} records: {str(e)}")
            raise

    async def claim_one(
        self,
        filter_: FilterLike,
        changes: Dict[str, Any],
        sort_by: str = "created_at",
    ) -> Optional[Dict[str, Any]]:
        """Atomically update the first document (in sort order) matching the filter."""
        try:
            document = await self.collection.find_one_and_update(
                to_query(filter_),
                {"$set": changes},
                sort=self._sort_spec(sort_by),
                return_document=ReturnDocument.AFTER,
            )
            return self._to_entity(document)
        except Exception as e:
            logger.error(f"Error claiming {self.entity_name}: {str(e)}")
            raise
