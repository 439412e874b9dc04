from typing import Dict, Any, Iterable, List, Optional
from datetime import datetime, timezone
import logging
import uuid
from fastapi import HTTPException

from wallet_ledger.repositories.transfer_repo import TransferRepository
from wallet_ledger.services.token_service import TokenService
from wallet_ledger.services.trust_service import TrustService
from wallet_ledger.services.wallet_service import WalletService
from wallet_ledger.utilities.enums import TransferState, TrustRequestType
from wallet_ledger.utilities.filters import And, Eq, In, Or
from wallet_ledger.utilities.pagination import page_window

logger = logging.getLogger(__name__)


class TransferService:
    """
    Service executing token transfers between wallets.

    A transfer completes immediately when the caller controls both wallets
    or the sender trusts the receiver. Otherwise it stays open: ``pending``
    when the sender side offered tokens (they are locked until the receiver
    accepts or claims them), ``requested`` when the receiver side asked for
    tokens (nothing is locked until the sender fulfils).
    """

    def __init__(
        self,
        transfer_repository: TransferRepository,
        token_service: TokenService,
        trust_service: TrustService,
        wallet_service: WalletService
    ):
        """
        Initialize with transfer repository and collaborating services.

        Args:
            transfer_repository: Repository for transfer data access
            token_service: Service owning token locks and movements
            trust_service: Service answering trust questions
            wallet_service: Service answering wallet control questions
        """
        self.transfer_repository = transfer_repository
        self.token_service = token_service
        self.trust_service = trust_service
        self.wallet_service = wallet_service

    async def _with_wallet_names(self, transfers: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        wallet_ids = set()
        for transfer in transfers:
            wallet_ids.update((
                transfer["originator_wallet_id"],
                transfer["sender_wallet_id"],
                transfer["receiver_wallet_id"]
            ))
        if not wallet_ids:
            return transfers

        wallets = await self.wallet_service.wallet_repository.get_by_filter(
            In("_id", sorted(wallet_ids)),
            sort_by=None
        )
        names = {wallet["id"]: wallet["name"] for wallet in wallets}
        for transfer in transfers:
            transfer["originator_wallet"] = names.get(transfer["originator_wallet_id"])
            transfer["sender_wallet"] = names.get(transfer["sender_wallet_id"])
            transfer["receiver_wallet"] = names.get(transfer["receiver_wallet_id"])
        return transfers

    async def _decide_state(
        self,
        originator_wallet: Dict[str, Any],
        sender_wallet: Dict[str, Any],
        receiver_wallet: Dict[str, Any]
    ) -> str:
        controls_sender = await self.wallet_service.has_control_over(
            originator_wallet["id"], sender_wallet["id"]
        )
        controls_receiver = await self.wallet_service.has_control_over(
            originator_wallet["id"], receiver_wallet["id"]
        )
        if controls_sender and controls_receiver:
            return TransferState.completed

        if await self.trust_service.has_trust(
            originator_wallet["id"], TrustRequestType.send, sender_wallet, receiver_wallet
        ):
            return TransferState.completed

        if controls_sender:
            return TransferState.pending
        return TransferState.requested

    async def _check_tokens_sendable(self, token_ids: Iterable[str], sender_wallet_id: str) -> None:
        for token_id in token_ids:
            token = await self.token_service.get_by_id(token_id)
            if token["wallet_id"] != sender_wallet_id:
                raise HTTPException(
                    status_code=403,
                    detail=f"The token {token_id} does not belong to the sender wallet"
                )
            if token.get("transfer_pending"):
                raise HTTPException(
                    status_code=409,
                    detail=f"The token {token_id} is pending in another transfer"
                )

    async def _create(self, transfer: Dict[str, Any]) -> Dict[str, Any]:
        try:
            return await self.transfer_repository.create(transfer)
        except Exception:
            await self.token_service.release_tokens(transfer["id"])
            raise

    async def _execute(
        self,
        originator_wallet: Dict[str, Any],
        sender_wallet: Dict[str, Any],
        receiver_wallet: Dict[str, Any],
        parameters: Dict[str, Any],
        claim: bool
    ) -> Dict[str, Any]:
        state = await self._decide_state(originator_wallet, sender_wallet, receiver_wallet)
        now = datetime.now(timezone.utc)
        transfer = {
            "id": str(uuid.uuid4()),
            "originator_wallet_id": originator_wallet["id"],
            "sender_wallet_id": sender_wallet["id"],
            "receiver_wallet_id": receiver_wallet["id"],
            "state": state,
            "parameters": parameters,
            "claim": claim,
            "created_at": now,
            "closed_at": now if state == TransferState.completed else None
        }

        if state == TransferState.requested:
            # Nothing is reserved or checked until the sender side fulfils
            transfer = await self.transfer_repository.create(transfer)
        else:
            if "tokens" in parameters:
                await self.token_service.lock_tokens(parameters["tokens"], sender_wallet["id"], transfer["id"])
            else:
                await self.token_service.lock_bundle(
                    sender_wallet["id"], parameters["bundle"]["bundle_size"], transfer["id"]
                )
            transfer = await self._create(transfer)
            if state == TransferState.completed:
                await self._settle(transfer)

        logger.info(
            f"Transfer {transfer['id']} {state}: {sender_wallet['id']} -> {receiver_wallet['id']}"
        )
        transfer["originator_wallet"] = originator_wallet["name"]
        transfer["sender_wallet"] = sender_wallet["name"]
        transfer["receiver_wallet"] = receiver_wallet["name"]
        return transfer

    async def transfer(
        self,
        originator_wallet: Dict[str, Any],
        sender_wallet: Dict[str, Any],
        receiver_wallet: Dict[str, Any],
        token_ids: List[str],
        claim: bool = False
    ) -> Dict[str, Any]:
        """
        Transfer named tokens from sender to receiver.

        Args:
            originator_wallet: The logged-in wallet issuing the transfer
            sender_wallet: Wallet giving the tokens
            receiver_wallet: Wallet receiving the tokens
            token_ids: Tokens to move
            claim: Stored flag, no effect on execution

        Returns:
            The transfer, in state completed, pending or requested

        Raises:
            HTTPException: 404 unknown token, 403 token not owned by the sender,
                409 token already pending
        """
        await self._check_tokens_sendable(token_ids, sender_wallet["id"])
        return await self._execute(
            originator_wallet,
            sender_wallet,
            receiver_wallet,
            {"tokens": list(token_ids)},
            claim
        )

    async def transfer_bundle(
        self,
        originator_wallet: Dict[str, Any],
        sender_wallet: Dict[str, Any],
        receiver_wallet: Dict[str, Any],
        bundle_size: int,
        claim: bool = False
    ) -> Dict[str, Any]:
        """
        Transfer a number of the sender's oldest free tokens.

        Raises:
            HTTPException: 403 if the sender holds fewer than bundle_size free tokens
                (checked when fulfilling for a receiver-side request)
        """
        return await self._execute(
            originator_wallet,
            sender_wallet,
            receiver_wallet,
            {"bundle": {"bundle_size": bundle_size}},
            claim
        )

    async def _transition(
        self,
        transfer: Dict[str, Any],
        from_states: Iterable[str],
        to_state: str
    ) -> Dict[str, Any]:
        from_states = list(from_states)
        updated = await self.transfer_repository.update_where(
            And(Eq("_id", transfer["id"]), In("state", from_states)),
            {"state": to_state, "closed_at": datetime.now(timezone.utc)}
        )
        if not updated:
            raise HTTPException(
                status_code=409,
                detail=f"The transfer {transfer['id']} is no longer {' or '.join(from_states)}"
            )
        logger.info(f"Transfer {transfer['id']} is now {to_state}")
        return updated

    async def _settle(self, transfer: Dict[str, Any], reopen_state: Optional[str] = None) -> List[Dict[str, Any]]:
        """
        Move the tokens of a transfer that was just marked completed.

        If moving fails, the transfer goes back to ``reopen_state`` (when it
        had one) and no token is left locked by a transfer that cannot be
        accepted, declined or cancelled any more. A pending transfer keeps
        its locks so it can be accepted again.
        """
        try:
            return await self.token_service.complete_locked_tokens(transfer)
        except Exception as e:
            logger.error(f"Error moving tokens for transfer {transfer['id']}: {str(e)}")
            if reopen_state:
                await self.transfer_repository.update_where(
                    And(Eq("_id", transfer["id"]), Eq("state", TransferState.completed)),
                    {"state": reopen_state, "closed_at": None}
                )
            if reopen_state != TransferState.pending:
                await self.token_service.release_tokens(transfer["id"])
            raise

    async def _get_open(self, transfer_id: str, states: Iterable[str] = TransferState.OPEN) -> Dict[str, Any]:
        transfer = await self.transfer_repository.get_by_id(transfer_id)
        if not transfer:
            raise HTTPException(status_code=404, detail=f"Could not find transfer by id: {transfer_id}")
        if transfer["state"] not in states:
            raise HTTPException(
                status_code=409,
                detail=f"The transfer {transfer_id} is {transfer['state']}, expected {' or '.join(states)}"
            )
        return transfer

    async def _require_control(self, login_wallet_id: str, wallet_id: str, action: str) -> None:
        if not await self.wallet_service.has_control_over(login_wallet_id, wallet_id):
            logger.warning(f"Wallet {login_wallet_id} has no permission to {action}")
            raise HTTPException(status_code=403, detail=f"Have no permission to {action} this transfer")

    async def accept_transfer(self, transfer_id: str, login_wallet_id: str) -> Dict[str, Any]:
        """Accept a pending transfer on the receiver side; the locked tokens move."""
        transfer = await self._get_open(transfer_id, (TransferState.pending,))
        await self._require_control(login_wallet_id, transfer["receiver_wallet_id"], "accept")

        transfer = await self._transition(transfer, (TransferState.pending,), TransferState.completed)
        await self._settle(transfer, reopen_state=TransferState.pending)
        [transfer] = await self._with_wallet_names([transfer])
        return transfer

    async def decline_transfer(self, transfer_id: str, login_wallet_id: str) -> Dict[str, Any]:
        """
        Reject an open transfer addressed to the caller's side.
        The receiver side declines pending offers and the sender side declines requests.
        """
        transfer = await self._get_open(transfer_id)
        if transfer["state"] == TransferState.pending:
            await self._require_control(login_wallet_id, transfer["receiver_wallet_id"], "decline")
        else:
            await self._require_control(login_wallet_id, transfer["sender_wallet_id"], "decline")

        transfer = await self._transition(transfer, TransferState.OPEN, TransferState.rejected)
        await self.token_service.release_tokens(transfer["id"])
        [transfer] = await self._with_wallet_names([transfer])
        return transfer

    async def cancel_transfer(self, transfer_id: str, login_wallet_id: str) -> Dict[str, Any]:
        """Withdraw an open transfer; only the originator side may do this."""
        transfer = await self._get_open(transfer_id)
        await self._require_control(login_wallet_id, transfer["originator_wallet_id"], "cancel")

        transfer = await self._transition(transfer, TransferState.OPEN, TransferState.cancelled)
        await self.token_service.release_tokens(transfer["id"])
        [transfer] = await self._with_wallet_names([transfer])
        return transfer

    @staticmethod
    def _requested_count(transfer: Dict[str, Any]) -> int:
        parameters = transfer.get("parameters") or {}
        if "tokens" in parameters:
            return len(parameters["tokens"])
        return parameters["bundle"]["bundle_size"]

    async def fulfill_transfer(
        self,
        transfer_id: str,
        login_wallet_id: str,
        tokens: Optional[List[str]] = None,
        implicit: bool = False
    ) -> Dict[str, Any]:
        """
        Complete an open transfer with explicit tokens or implicitly.

        A pending transfer is claimed by the receiver side: explicit tokens
        must be exactly the ones the transfer locked. A requested transfer is
        fulfilled by the sender side: explicit tokens must be the sender's,
        free, and as many as requested (exactly the named ones when the
        request named tokens); implicit fulfilment takes the named tokens of
        the request or else the sender's oldest free ones.

        Args:
            transfer_id: The open transfer
            login_wallet_id: The logged-in wallet
            tokens: Explicit token ids
            implicit: Let the ledger choose the tokens

        Returns:
            The completed transfer
        """
        if (tokens is None) == (not implicit):
            raise HTTPException(status_code=422, detail="One of tokens or implicit is required")

        transfer = await self._get_open(transfer_id)

        if transfer["state"] == TransferState.pending:
            await self._require_control(login_wallet_id, transfer["receiver_wallet_id"], "fulfill")
            if tokens is not None:
                locked = await self.token_service.get_locked_tokens(transfer["id"])
                if set(tokens) != {token["id"] for token in locked}:
                    raise HTTPException(
                        status_code=409,
                        detail="The tokens do not match the tokens of this transfer"
                    )
            transfer = await self._transition(transfer, (TransferState.pending,), TransferState.completed)
            await self._settle(transfer, reopen_state=TransferState.pending)
        else:
            await self._require_control(login_wallet_id, transfer["sender_wallet_id"], "fulfill")
            sender_wallet_id = transfer["sender_wallet_id"]
            parameters = transfer.get("parameters") or {}

            if tokens is not None:
                if "tokens" in parameters and set(tokens) != set(parameters["tokens"]):
                    raise HTTPException(
                        status_code=409,
                        detail="The tokens do not match the tokens of this transfer"
                    )
                if len(set(tokens)) != self._requested_count(transfer):
                    raise HTTPException(
                        status_code=409,
                        detail="The number of tokens does not match the requested amount"
                    )
                await self._check_tokens_sendable(tokens, sender_wallet_id)
                await self.token_service.lock_tokens(tokens, sender_wallet_id, transfer["id"])
            elif "tokens" in parameters:
                await self.token_service.lock_tokens(parameters["tokens"], sender_wallet_id, transfer["id"])
            else:
                await self.token_service.lock_bundle(
                    sender_wallet_id, self._requested_count(transfer), transfer["id"]
                )

            try:
                transfer = await self._transition(transfer, (TransferState.requested,), TransferState.completed)
            except HTTPException:
                await self.token_service.release_tokens(transfer["id"])
                raise
            await self._settle(transfer, reopen_state=TransferState.requested)

        [transfer] = await self._with_wallet_names([transfer])
        return transfer

    async def get_transfers(
        self,
        login_wallet_id: str,
        state: Optional[str] = None,
        wallet: Optional[str] = None,
        start: Optional[int] = 1,
        limit: Optional[int] = None
    ) -> Dict[str, Any]:
        """
        List transfers visible to the logged-in wallet, newest first.

        Args:
            login_wallet_id: The logged-in wallet
            state: Optional state filter
            wallet: Id or name of one managed wallet to narrow the listing to
            start: 1-based position of the first transfer
            limit: Maximum number of transfers

        Returns:
            Dict with the page of transfers and the total count
        """
        if wallet:
            wallet_id = (await self.wallet_service.get_by_id_or_name(wallet))["id"]
            if not await self.wallet_service.has_control_over(login_wallet_id, wallet_id):
                raise HTTPException(status_code=403, detail="Have no permission to access this wallet")
            wallet_ids = [wallet_id]
        else:
            wallet_ids = [login_wallet_id] + await self.wallet_service.get_sub_wallet_ids(login_wallet_id)

        filter_ = And(
            Or(
                In("originator_wallet_id", wallet_ids),
                In("sender_wallet_id", wallet_ids),
                In("receiver_wallet_id", wallet_ids)
            ),
            Eq("state", state) if state else None
        )
        count = await self.transfer_repository.count_by_filter(filter_)

        window = page_window(start, limit)
        if window is None:
            return {"transfers": [], "count": count}
        offset, limit = window
        transfers = await self.transfer_repository.get_by_filter(
            filter_,
            offset=offset,
            limit=limit,
            sort_by="created_at",
            order="desc"
        )
        return {"transfers": await self._with_wallet_names(transfers), "count": count}

    async def get_transfer_by_id(self, login_wallet_id: str, transfer_id: str) -> Dict[str, Any]:
        """Get a transfer the logged-in wallet is involved in; 404 otherwise."""
        transfer = await self.transfer_repository.get_by_id(transfer_id)
        if transfer:
            for key in ("originator_wallet_id", "sender_wallet_id", "receiver_wallet_id"):
                if await self.wallet_service.has_control_over(login_wallet_id, transfer[key]):
                    [transfer] = await self._with_wallet_names([transfer])
                    return transfer
        raise HTTPException(status_code=404, detail=f"Could not find transfer by id: {transfer_id}")

    async def get_tokens_by_transfer_id(
        self,
        login_wallet_id: str,
        transfer_id: str,
        start: Optional[int] = 1,
        limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        """
        Tokens involved in a transfer, in token creation order.
        Completed transfers report the tokens they moved, open ones the tokens they hold.
        """
        transfer = await self.get_transfer_by_id(login_wallet_id, transfer_id)

        if transfer["state"] == TransferState.completed:
            transactions = await self.token_service.transaction_repository.get_by_filter(
                Eq("transfer_id", transfer["id"]),
                sort_by=None
            )
            filter_ = In("_id", [transaction["token_id"] for transaction in transactions])
        else:
            filter_ = And(Eq("transfer_id", transfer["id"]), Eq("transfer_pending", True))

        window = page_window(start, limit)
        if window is None:
            return []
        offset, limit = window
        return await self.token_service.token_repository.get_by_filter(
            filter_,
            offset=offset,
            limit=limit
        )
