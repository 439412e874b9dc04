from typing import Optional, Dict, Any
from datetime import datetime, timezone
import logging

from wallet_ledger.repositories.auth_repo import AuthRepository

logger = logging.getLogger(__name__)


class AuthService:
    """Resolves session tokens to the wallet they were issued for."""

    def __init__(self, auth_repository: AuthRepository):
        self.auth_repository = auth_repository

    async def validate_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        """
        Look up a live session.

        A storage failure is logged and treated as no session, so the
        request continues unauthenticated and protected routes answer 401.

        Args:
            session_id: Session token from the bearer header or cookie

        Returns:
            Session data carrying ``walletId``, or None
        """
        try:
            return await self.auth_repository.get_live_session(session_id, datetime.now(timezone.utc))
        except Exception as e:
            logger.error(f"Error validating session {session_id}: {str(e)}")
            return None
