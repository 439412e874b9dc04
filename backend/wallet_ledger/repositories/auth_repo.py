from typing import Optional, Dict, Any
from datetime import datetime
import logging

from wallet_ledger.utilities.filters import And, Eq, Gt, to_query

logger = logging.getLogger(__name__)


class AuthRepository:
    """
    Read-only access to the sessions collection.
    Sessions are minted by the external login service and carry the wallet they belong to.
    """

    def __init__(self, db_client):
        self.sessions_collection = db_client.sessions_collection

    async def get_live_session(self, session_id: str, now: datetime) -> Optional[Dict[str, Any]]:
        """
        Find an active session that has not expired at ``now``.

        Args:
            session_id: Opaque session token sent by the client
            now: Reference time for the expiry check

        Returns:
            The session document, or None when there is no live session
        """
        query = to_query(And(
            Eq("sessionId", session_id),
            Eq("isActive", True),
            Gt("expiresAt", now)
        ))
        session = await self.sessions_collection.find_one(query)
        if session:
            session["_id"] = str(session["_id"])
        return session
