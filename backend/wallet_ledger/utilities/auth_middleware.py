from typing import Callable, Optional
import logging
from fastapi import Request, Response, HTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from wallet_ledger.services.auth_service import AuthService
from wallet_ledger.repositories.auth_repo import AuthRepository
from wallet_ledger.database import get_db_client

logger = logging.getLogger(__name__)


class AuthMiddleware(BaseHTTPMiddleware):
    """
    Middleware resolving the session of each request to a wallet.

    The wallet id is placed on ``request.state.wallet_id``; routes demand it
    through the ``get_wallet_id`` dependency, so public paths need no list here.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """
        Resolve the session (if any) and hand the request on.

        Args:
            request: The incoming request
            call_next: The next middleware or route handler

        Returns:
            The response from the next middleware or route handler
        """
        path = request.url.path
        method = request.method
        logger.info(f"Received {method} request for path: {path}")

        request.state.wallet_id = None

        # Skip authentication for OPTIONS requests (CORS preflight)
        if method == "OPTIONS":
            return await call_next(request)

        session_id = self._get_session_id(request)
        if session_id:
            session_data = await self._validate_session(session_id)
            if session_data:
                request.state.wallet_id = session_data.get("walletId")
                logger.debug(f"Wallet {request.state.wallet_id} authenticated for {path}")

        return await call_next(request)

    @staticmethod
    def _get_session_id(request: Request) -> Optional[str]:
        authorization = request.headers.get("Authorization", "")
        scheme, _, token = authorization.partition(" ")
        if scheme.lower() == "bearer" and token.strip():
            return token.strip()
        return request.cookies.get("session_id")

    async def _validate_session(self, session_id: str):
        """
        Validate a session ID.

        Args:
            session_id: The session ID to validate

        Returns:
            Session data if valid, None otherwise
        """
        try:
            auth_service = AuthService(AuthRepository(get_db_client()))
            session_data = await auth_service.validate_session(session_id)
            if not session_data:
                logger.debug(f"Invalid session ID: {session_id}")
            return session_data

        except Exception as e:
            logger.error(f"Error validating session: {str(e)}")
            return None


# Dependency functions for FastAPI routes

async def get_wallet_id(request: Request) -> str:
    """
    Get the authenticated wallet id from request state.

    Raises:
        HTTPException: 401 if the request carries no valid session
    """
    wallet_id = getattr(request.state, "wallet_id", None)
    if not wallet_id:
        raise HTTPException(status_code=401, detail="Authentication required")
    return wallet_id
