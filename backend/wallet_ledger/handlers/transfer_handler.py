from typing import Dict, Any, List, Optional
import logging
from fastapi import HTTPException

from wallet_ledger.services.transfer_service import TransferService
from wallet_ledger.services.wallet_service import WalletService
from wallet_ledger.services.event_service import EventService

logger = logging.getLogger(__name__)


class TransferHandler:
    """
    Handler for token transfer operations.
    Authorizes the caller against the wallet hierarchy and records transfer events.
    """

    def __init__(
        self,
        transfer_service: TransferService,
        wallet_service: WalletService,
        event_service: EventService
    ):
        """
        Initialize with required services.

        Args:
            transfer_service: Service executing transfers
            wallet_service: Service for wallet lookups and control checks
            event_service: Service recording events
        """
        self.transfer_service = transfer_service
        self.wallet_service = wallet_service
        self.event_service = event_service

    async def _log_transfer_event(self, transfer: Dict[str, Any]) -> None:
        event_type = f"transfer_{transfer['state']}"
        payload = {"transferId": transfer["id"]}
        await self.event_service.log_event(
            wallet_id=transfer["sender_wallet_id"], type=event_type, payload=payload
        )
        await self.event_service.log_event(
            wallet_id=transfer["receiver_wallet_id"], type=event_type, payload=payload
        )

    async def create_transfer(
        self,
        login_wallet_id: str,
        sender_wallet: str,
        receiver_wallet: str,
        tokens: Optional[List[str]] = None,
        bundle_size: Optional[int] = None,
        claim: bool = False
    ) -> Dict[str, Any]:
        """
        Send named tokens or a bundle from one wallet to another.

        Args:
            login_wallet_id: The logged-in wallet, recorded as originator
            sender_wallet: Sender id or name
            receiver_wallet: Receiver id or name
            tokens: Explicit token ids (exclusive with bundle_size)
            bundle_size: Number of tokens to send
            claim: Stored claim flag

        Returns:
            The transfer; its state tells completed from pending or requested

        Raises:
            HTTPException: 422 same wallet, 403 caller controls neither side
        """
        try:
            originator = await self.wallet_service.get_by_id(login_wallet_id)
            sender = await self.wallet_service.get_by_id_or_name(sender_wallet)
            receiver = await self.wallet_service.get_by_id_or_name(receiver_wallet)

            if sender["id"] == receiver["id"]:
                raise HTTPException(status_code=422, detail="Cannot transfer to the same wallet")

            controls_sender = await self.wallet_service.has_control_over(originator["id"], sender["id"])
            controls_receiver = await self.wallet_service.has_control_over(originator["id"], receiver["id"])
            if not controls_sender and not controls_receiver:
                logger.warning(
                    f"Wallet {originator['id']} tried to transfer from {sender['id']} to {receiver['id']}"
                )
                raise HTTPException(status_code=403, detail="Have no permission to do this transfer")

            if tokens is not None:
                transfer = await self.transfer_service.transfer(
                    originator, sender, receiver, tokens, claim
                )
            else:
                transfer = await self.transfer_service.transfer_bundle(
                    originator, sender, receiver, bundle_size, claim
                )

            await self._log_transfer_event(transfer)
            return transfer

        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"Error creating transfer: {str(e)}")
            raise HTTPException(status_code=500, detail=f"Error creating transfer: {str(e)}")

    async def accept_transfer(self, login_wallet_id: str, transfer_id: str) -> Dict[str, Any]:
        try:
            transfer = await self.transfer_service.accept_transfer(transfer_id, login_wallet_id)
            await self._log_transfer_event(transfer)
            return transfer
        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"Error accepting transfer: {str(e)}")
            raise HTTPException(status_code=500, detail=f"Error accepting transfer: {str(e)}")

    async def decline_transfer(self, login_wallet_id: str, transfer_id: str) -> Dict[str, Any]:
        try:
            transfer = await self.transfer_service.decline_transfer(transfer_id, login_wallet_id)
            await self._log_transfer_event(transfer)
            return transfer
        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"Error declining transfer: {str(e)}")
            raise HTTPException(status_code=500, detail=f"Error declining transfer: {str(e)}")

    async def cancel_transfer(self, login_wallet_id: str, transfer_id: str) -> Dict[str, Any]:
        try:
            transfer = await self.transfer_service.cancel_transfer(transfer_id, login_wallet_id)
            await self._log_transfer_event(transfer)
            return transfer
        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"Error cancelling transfer: {str(e)}")
            raise HTTPException(status_code=500, detail=f"Error cancelling transfer: {str(e)}")

    async def fulfill_transfer(
        self,
        login_wallet_id: str,
        transfer_id: str,
        tokens: Optional[List[str]] = None,
        implicit: bool = False
    ) -> Dict[str, Any]:
        try:
            transfer = await self.transfer_service.fulfill_transfer(
                transfer_id, login_wallet_id, tokens=tokens, implicit=implicit
            )
            await self._log_transfer_event(transfer)
            return transfer
        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"Error fulfilling transfer: {str(e)}")
            raise HTTPException(status_code=500, detail=f"Error fulfilling transfer: {str(e)}")

    async def get_transfers(
        self,
        login_wallet_id: str,
        state: Optional[str] = None,
        wallet: Optional[str] = None,
        start: Optional[int] = 1,
        limit: Optional[int] = None
    ) -> Dict[str, Any]:
        try:
            return await self.transfer_service.get_transfers(
                login_wallet_id, state=state, wallet=wallet, start=start, limit=limit
            )
        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"Error retrieving transfers: {str(e)}")
            raise HTTPException(status_code=500, detail=f"Error retrieving transfers: {str(e)}")

    async def get_transfer(self, login_wallet_id: str, transfer_id: str) -> Dict[str, Any]:
        try:
            return await self.transfer_service.get_transfer_by_id(login_wallet_id, transfer_id)
        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"Error retrieving transfer: {str(e)}")
            raise HTTPException(status_code=500, detail=f"Error retrieving transfer: {str(e)}")

    async def get_transfer_tokens(
        self,
        login_wallet_id: str,
        transfer_id: str,
        start: Optional[int] = 1,
        limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        try:
            return await self.transfer_service.get_tokens_by_transfer_id(
                login_wallet_id, transfer_id, start=start, limit=limit
            )
        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"Error retrieving transfer tokens: {str(e)}")
            raise HTTPException(status_code=500, detail=f"Error retrieving transfer tokens: {str(e)}")
