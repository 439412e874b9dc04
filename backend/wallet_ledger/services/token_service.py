from typing import Dict, Any, Iterable, List, Optional
from datetime import datetime, timezone
import logging
from fastapi import HTTPException

from wallet_ledger.repositories.token_repo import TokenRepository
from wallet_ledger.repositories.transaction_repo import TransactionRepository
from wallet_ledger.services.wallet_service import WalletService
from wallet_ledger.utilities.filters import And, Eq, In
from wallet_ledger.utilities.pagination import page_window

logger = logging.getLogger(__name__)

NOT_ENOUGH_TOKENS_MESSAGE = "Do not have enough tokens to send"


class TokenService:
    """
    Service for token ownership and custody locks.

    A token is locked for a transfer by atomically flipping
    ``transfer_pending`` while it is still owned by the sender and free, so
    one token can never be held by two in-flight transfers. Multi-token locks
    are all-or-nothing: a failed lock releases whatever the same call took.
    """

    def __init__(
        self,
        token_repository: TokenRepository,
        transaction_repository: TransactionRepository,
        wallet_service: WalletService
    ):
        """
        Initialize with token and transaction repositories.

        Args:
            token_repository: Repository for token data access
            transaction_repository: Repository for token movement records
            wallet_service: Service answering wallet control questions
        """
        self.token_repository = token_repository
        self.transaction_repository = transaction_repository
        self.wallet_service = wallet_service

    async def get_by_id(self, token_id: str) -> Dict[str, Any]:
        token = await self.token_repository.get_by_id(token_id)
        if not token:
            raise HTTPException(status_code=404, detail=f"Could not find token by id: {token_id}")
        return token

    async def get_tokens_by_wallet(
        self,
        wallet_id: str,
        start: Optional[int] = 1,
        limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        """
        Get a page of a wallet's tokens in creation order.

        Args:
            wallet_id: Owning wallet
            start: 1-based position of the first token
            limit: Maximum number of tokens

        Returns:
            List of tokens; empty when the window is out of range
        """
        window = page_window(start, limit)
        if window is None:
            return []
        offset, limit = window
        return await self.token_repository.get_by_filter(
            Eq("wallet_id", wallet_id),
            offset=offset,
            limit=limit
        )

    async def count_token_by_wallet(self, wallet_id: str) -> int:
        return await self.token_repository.count_by_filter(Eq("wallet_id", wallet_id))

    async def get_tokens_by_bundle(self, wallet_id: str, bundle_size: int) -> List[Dict[str, Any]]:
        """
        Get the oldest ``bundle_size`` free tokens of a wallet.

        Raises:
            HTTPException: 403 if the wallet holds fewer free tokens
        """
        tokens = await self.token_repository.get_by_filter(
            And(Eq("wallet_id", wallet_id), Eq("transfer_pending", False)),
            limit=bundle_size
        )
        if len(tokens) < bundle_size:
            raise HTTPException(status_code=403, detail=NOT_ENOUGH_TOKENS_MESSAGE)
        return tokens

    async def get_tokens(
        self,
        login_wallet_id: str,
        wallet: Optional[str] = None,
        start: Optional[int] = 1,
        limit: Optional[int] = None
    ) -> Dict[str, Any]:
        """
        List the tokens of the logged-in wallet or of a wallet it manages.

        Args:
            login_wallet_id: The logged-in wallet
            wallet: Id or name of a managed wallet (defaults to the login wallet)
            start: 1-based position of the first token
            limit: Maximum number of tokens

        Returns:
            Dict with the page of tokens and the wallet's total token count
        """
        wallet_id = login_wallet_id
        if wallet:
            wallet_id = (await self.wallet_service.get_by_id_or_name(wallet))["id"]
            if not await self.wallet_service.has_control_over(login_wallet_id, wallet_id):
                logger.warning(f"Wallet {login_wallet_id} tried to list tokens of {wallet_id}")
                raise HTTPException(status_code=403, detail="Have no permission to access this wallet")

        tokens = await self.get_tokens_by_wallet(wallet_id, start, limit)
        count = await self.count_token_by_wallet(wallet_id)
        return {"tokens": tokens, "count": count}

    async def get_token(self, login_wallet_id: str, token_id: str) -> Dict[str, Any]:
        """Get a token held by the logged-in wallet or a wallet it manages."""
        token = await self.token_repository.get_by_id(token_id)
        if not token or not await self.wallet_service.has_control_over(login_wallet_id, token["wallet_id"]):
            raise HTTPException(status_code=404, detail=f"Could not find token by id: {token_id}")
        return token

    async def get_transactions(
        self,
        token_id: str,
        start: Optional[int] = 1,
        limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        """Movement history of a token, oldest first."""
        window = page_window(start, limit)
        if window is None:
            return []
        offset, limit = window
        return await self.transaction_repository.get_by_filter(
            Eq("token_id", token_id),
            offset=offset,
            limit=limit,
            sort_by="processed_at"
        )

    async def get_locked_tokens(self, transfer_id: str) -> List[Dict[str, Any]]:
        return await self.token_repository.get_by_filter(
            And(Eq("transfer_id", transfer_id), Eq("transfer_pending", True))
        )

    async def _lock_one(self, token_id: str, sender_wallet_id: str, transfer_id: str) -> Optional[Dict[str, Any]]:
        return await self.token_repository.update_where(
            And(
                Eq("_id", token_id),
                Eq("wallet_id", sender_wallet_id),
                Eq("transfer_pending", False)
            ),
            {"transfer_pending": True, "transfer_id": transfer_id}
        )

    async def _release_ids(self, token_ids: List[str], transfer_id: str) -> int:
        if not token_ids:
            return 0
        return await self.token_repository.update_many_where(
            And(In("_id", token_ids), Eq("transfer_id", transfer_id)),
            {"transfer_pending": False, "transfer_id": None}
        )

    async def lock_tokens(
        self,
        token_ids: Iterable[str],
        sender_wallet_id: str,
        transfer_id: str
    ) -> List[Dict[str, Any]]:
        """
        Lock named tokens of the sender for a transfer, all or nothing.

        Args:
            token_ids: Tokens to lock
            sender_wallet_id: Wallet that must own the tokens
            transfer_id: Transfer taking the lock

        Returns:
            The locked tokens

        Raises:
            HTTPException: 409 if any token is no longer owned by the sender or already locked
        """
        locked = []
        for token_id in token_ids:
            token = await self._lock_one(token_id, sender_wallet_id, transfer_id)
            if token is None:
                await self._release_ids([t["id"] for t in locked], transfer_id)
                logger.warning(f"Token {token_id} could not be locked for transfer {transfer_id}")
                raise HTTPException(
                    status_code=409,
                    detail=f"The token {token_id} is pending in another transfer or no longer belongs to the sender"
                )
            locked.append(token)

        logger.debug(f"Locked {len(locked)} tokens for transfer {transfer_id}")
        return locked

    async def lock_bundle(self, sender_wallet_id: str, bundle_size: int, transfer_id: str) -> List[Dict[str, Any]]:
        """
        Lock the sender's oldest ``bundle_size`` free tokens, all or nothing.

        Raises:
            HTTPException: 403 if the sender cannot cover the bundle
        """
        locked = []
        while len(locked) < bundle_size:
            token = await self.token_repository.claim_one(
                And(Eq("wallet_id", sender_wallet_id), Eq("transfer_pending", False)),
                {"transfer_pending": True, "transfer_id": transfer_id}
            )
            if token is None:
                await self._release_ids([t["id"] for t in locked], transfer_id)
                logger.warning(
                    f"Wallet {sender_wallet_id} holds fewer than {bundle_size} free tokens "
                    f"for transfer {transfer_id}"
                )
                raise HTTPException(status_code=403, detail=NOT_ENOUGH_TOKENS_MESSAGE)
            locked.append(token)

        logger.debug(f"Locked bundle of {bundle_size} tokens for transfer {transfer_id}")
        return locked

    async def complete_locked_tokens(self, transfer: Dict[str, Any]) -> List[Dict[str, Any]]:
        """
        Move every token locked by a transfer to its receiver.

        Each moved token is unlocked and gets one transaction record.

        Args:
            transfer: The transfer whose locked tokens move

        Returns:
            The moved tokens
        """
        moved = []
        for token in await self.get_locked_tokens(transfer["id"]):
            updated = await self.token_repository.update_where(
                And(Eq("_id", token["id"]), Eq("transfer_id", transfer["id"])),
                {
                    "wallet_id": transfer["receiver_wallet_id"],
                    "transfer_pending": False,
                    "transfer_id": None
                }
            )
            if updated is None:
                continue
            await self.transaction_repository.create({
                "token_id": token["id"],
                "transfer_id": transfer["id"],
                "source_wallet_id": token["wallet_id"],
                "destination_wallet_id": transfer["receiver_wallet_id"],
                "claim": transfer.get("claim", False),
                "processed_at": datetime.now(timezone.utc)
            })
            moved.append(updated)

        logger.info(
            f"Moved {len(moved)} tokens from {transfer['sender_wallet_id']} "
            f"to {transfer['receiver_wallet_id']} for transfer {transfer['id']}"
        )
        return moved

    async def release_tokens(self, transfer_id: str) -> int:
        """Clear every lock held by a transfer."""
        released = await self.token_repository.update_many_where(
            Eq("transfer_id", transfer_id),
            {"transfer_pending": False, "transfer_id": None}
        )
        logger.debug(f"Released {released} tokens held by transfer {transfer_id}")
        return released
