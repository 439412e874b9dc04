from typing import Dict, Any, Optional
import logging
from fastapi import HTTPException

from wallet_ledger.services.trust_service import TrustService
from wallet_ledger.services.wallet_service import WalletService
from wallet_ledger.services.event_service import EventService

logger = logging.getLogger(__name__)


class TrustHandler:
    """
    Handler for trust relationship operations.
    Resolves wallets, drives the trust engine and records an event for each party.
    """

    def __init__(
        self,
        trust_service: TrustService,
        wallet_service: WalletService,
        event_service: EventService
    ):
        """
        Initialize with required services.

        Args:
            trust_service: Service implementing the trust state machine
            wallet_service: Service for wallet lookups
            event_service: Service recording events
        """
        self.trust_service = trust_service
        self.wallet_service = wallet_service
        self.event_service = event_service

    async def create_trust_relationship(
        self,
        login_wallet_id: str,
        trust_request_type: str,
        requestee_wallet: str,
        requester_wallet: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Request trust on behalf of the logged-in wallet or a wallet it manages.

        Args:
            login_wallet_id: The logged-in wallet, always the originator
            trust_request_type: send, receive, manage or yield
            requestee_wallet: Name of the wallet asked to grant the trust
            requester_wallet: Name of the requesting wallet (defaults to the login wallet)

        Returns:
            The new relationship
        """
        try:
            originator = await self.wallet_service.get_by_id(login_wallet_id)
            if requester_wallet:
                requester = await self.wallet_service.get_by_name(requester_wallet)
            else:
                requester = originator
            requestee = await self.wallet_service.get_by_name(requestee_wallet)

            trust_relationship = await self.trust_service.request_trust_from_a_wallet(
                trust_request_type=trust_request_type,
                requester_wallet=requester,
                requestee_wallet=requestee,
                originator_wallet=originator
            )

            payload = {
                "requesteeWallet": requestee["name"],
                "requesterWallet": requester["name"],
                "trustRequestType": trust_request_type
            }
            await self.event_service.log_event(wallet_id=requester["id"], type="trust_request", payload=payload)
            await self.event_service.log_event(wallet_id=requestee["id"], type="trust_request", payload=payload)

            return trust_relationship

        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"Error creating trust relationship: {str(e)}")
            raise HTTPException(status_code=500, detail=f"Error creating trust relationship: {str(e)}")

    async def accept_trust_relationship(self, login_wallet_id: str, trust_relationship_id: str) -> Dict[str, Any]:
        try:
            trust_relationship = await self.trust_service.accept_trust_request_sent_to_me(
                trust_relationship_id, login_wallet_id
            )
            payload = {"trustRelationshipId": trust_relationship["id"]}
            await self.event_service.log_event(
                wallet_id=login_wallet_id, type="trust_request_granted", payload=payload
            )
            await self.event_service.log_event(
                wallet_id=trust_relationship["originator_wallet_id"], type="trust_request_granted", payload=payload
            )
            return trust_relationship

        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"Error accepting trust relationship: {str(e)}")
            raise HTTPException(status_code=500, detail=f"Error accepting trust relationship: {str(e)}")

    async def decline_trust_relationship(self, login_wallet_id: str, trust_relationship_id: str) -> Dict[str, Any]:
        try:
            trust_relationship = await self.trust_service.decline_trust_request_sent_to_me(
                trust_relationship_id, login_wallet_id
            )
            payload = {"trustRelationshipId": trust_relationship["id"]}
            await self.event_service.log_event(
                wallet_id=login_wallet_id, type="trust_request_cancelled_by_target", payload=payload
            )
            await self.event_service.log_event(
                wallet_id=trust_relationship["originator_wallet_id"],
                type="trust_request_cancelled_by_target",
                payload=payload
            )
            return trust_relationship

        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"Error declining trust relationship: {str(e)}")
            raise HTTPException(status_code=500, detail=f"Error declining trust relationship: {str(e)}")

    async def cancel_trust_relationship(self, login_wallet_id: str, trust_relationship_id: str) -> Dict[str, Any]:
        try:
            trust_relationship = await self.trust_service.cancel_trust_request(
                trust_relationship_id, login_wallet_id
            )
            payload = {"trustRelationshipId": trust_relationship["id"]}
            await self.event_service.log_event(
                wallet_id=login_wallet_id, type="trust_request_cancelled_by_originator", payload=payload
            )
            await self.event_service.log_event(
                wallet_id=trust_relationship["target_wallet_id"],
                type="trust_request_cancelled_by_originator",
                payload=payload
            )
            return trust_relationship

        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"Error cancelling trust relationship: {str(e)}")
            raise HTTPException(status_code=500, detail=f"Error cancelling trust relationship: {str(e)}")

    async def get_trust_relationships(
        self,
        login_wallet_id: str,
        state: Optional[str] = None,
        type: Optional[str] = None,
        request_type: Optional[str] = None,
        offset: int = 0,
        limit: Optional[int] = None,
        sort_by: Optional[str] = "created_at",
        order: str = "desc",
        search: Optional[str] = None,
        exclude_managed: bool = False
    ) -> Dict[str, Any]:
        """
        List relationships of the logged-in wallet and every wallet it manages.
        """
        try:
            managed = await self.wallet_service.get_sub_wallet_ids(login_wallet_id)
            return await self.trust_service.get_trust_relationships(
                login_wallet_id,
                managed_wallets=[{"id": wallet_id} for wallet_id in managed],
                state=state,
                type=type,
                request_type=request_type,
                offset=offset,
                limit=limit,
                sort_by=sort_by,
                order=order,
                search=search,
                exclude_managed=exclude_managed
            )

        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"Error retrieving trust relationships: {str(e)}")
            raise HTTPException(status_code=500, detail=f"Error retrieving trust relationships: {str(e)}")

    async def get_trust_relationship(self, login_wallet_id: str, trust_relationship_id: str) -> Dict[str, Any]:
        try:
            return await self.trust_service.get_trust_relationship_by_id(login_wallet_id, trust_relationship_id)
        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"Error retrieving trust relationship: {str(e)}")
            raise HTTPException(status_code=500, detail=f"Error retrieving trust relationship: {str(e)}")
