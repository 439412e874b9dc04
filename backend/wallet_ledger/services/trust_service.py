from typing import Dict, Any, Iterable, List, Optional
from datetime import datetime, timezone
import logging
from fastapi import HTTPException
from pymongo.errors import DuplicateKeyError

from wallet_ledger.repositories.trust_repo import TrustRepository
from wallet_ledger.services.wallet_service import WalletService
from wallet_ledger.utilities.enums import (
    TrustRequestType,
    TrustState,
    TrustType,
    get_trust_type_by_request_type,
)
from wallet_ledger.utilities.filters import And, Eq, ILike, In, Ne, Or

logger = logging.getLogger(__name__)

MANAGEMENT_CIRCLE_MESSAGE = "Operation forbidden, because this would lead to a management circle"
NOT_REQUESTED_TO_ME_MESSAGE = (
    "No such trust relationship exists or it is not associated with the current wallet."
)


class TrustService:
    """
    Service implementing the trust relationship state machine.

    A relationship is created as ``requested`` and moves exactly once to
    ``trusted``, ``canceled_by_target`` or ``cancelled_by_originator``; a
    trusted relationship can still be cancelled by its originator. Every
    transition is a conditional update on the current state, so two racing
    requests cannot both move the same relationship.
    """

    def __init__(self, trust_repository: TrustRepository, wallet_service: WalletService):
        """
        Initialize with trust repository and the wallet hierarchy service.

        Args:
            trust_repository: Repository for trust relationship data access
            wallet_service: Service answering wallet lookups and control questions
        """
        self.trust_repository = trust_repository
        self.wallet_service = wallet_service

    async def _with_wallet_names(self, relationships: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Denormalize actor/target/originator wallet names onto each relationship."""
        wallet_ids = set()
        for relationship in relationships:
            wallet_ids.update((
                relationship["actor_wallet_id"],
                relationship["target_wallet_id"],
                relationship["originator_wallet_id"]
            ))
        if not wallet_ids:
            return relationships

        wallets = await self.wallet_service.wallet_repository.get_by_filter(
            In("_id", sorted(wallet_ids)),
            sort_by=None
        )
        names = {wallet["id"]: wallet["name"] for wallet in wallets}
        for relationship in relationships:
            relationship["actor_wallet"] = names.get(relationship["actor_wallet_id"])
            relationship["target_wallet"] = names.get(relationship["target_wallet_id"])
            relationship["originator_wallet"] = names.get(relationship["originator_wallet_id"])
        return relationships

    async def _wallet_ids_by_name(self, search: str) -> List[str]:
        wallets = await self.wallet_service.wallet_repository.get_by_filter(
            ILike("name", f"%{search}%"),
            sort_by=None
        )
        return [wallet["id"] for wallet in wallets]

    async def get_trust_relationships(
        self,
        wallet_id: str,
        managed_wallets: Optional[Iterable[Dict[str, Any]]] = None,
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
        Get relationships touching a wallet or any of the wallets it manages.

        Args:
            wallet_id: The wallet whose relationships to list
            managed_wallets: Wallets managed by wallet_id whose relationships are included
            state, type, request_type: Optional exact-match filters
            offset, limit, sort_by, order: Pagination and ordering
            search: Case-insensitive substring of any involved wallet's name
            exclude_managed: Drop manage/yield relationships

        Returns:
            Dict with the relationships and their total count
        """
        wallet_ids = [wallet_id] + [wallet["id"] for wallet in managed_wallets or []]

        search_filter = None
        if search:
            matching_ids = await self._wallet_ids_by_name(search)
            search_filter = Or(
                In("originator_wallet_id", matching_ids),
                In("actor_wallet_id", matching_ids),
                In("target_wallet_id", matching_ids)
            )

        filter_ = And(
            Or(
                In("actor_wallet_id", wallet_ids),
                In("target_wallet_id", wallet_ids),
                In("originator_wallet_id", wallet_ids)
            ),
            Eq("state", state) if state else None,
            Eq("type", type) if type else None,
            Eq("request_type", request_type) if request_type else None,
            And(
                Ne("request_type", TrustRequestType.manage),
                Ne("request_type", TrustRequestType.yield_)
            ) if exclude_managed else None,
            search_filter
        )

        relationships = await self.trust_repository.get_by_filter(
            filter_,
            offset=offset,
            limit=limit,
            sort_by=sort_by,
            order=order
        )
        count = await self.trust_repository.count_by_filter(filter_)
        return {
            "trust_relationships": await self._with_wallet_names(relationships),
            "count": count
        }

    async def request_trust_from_a_wallet(
        self,
        trust_request_type: str,
        requester_wallet: Dict[str, Any],
        requestee_wallet: Dict[str, Any],
        originator_wallet: Dict[str, Any]
    ) -> Dict[str, Any]:
        """
        Send a trust request to another wallet.

        Args:
            trust_request_type: send, receive, manage or yield
            requester_wallet: Wallet asking for the capability
            requestee_wallet: Wallet asked to grant it
            originator_wallet: Logged-in wallet issuing the request

        Returns:
            Denormalized view of the new relationship

        Raises:
            HTTPException: 403 if the originator cannot act for the requester,
                409 for redundant, self-targeting or duplicate requests
        """
        logger.debug("request trust...")

        # The requester is always the actor, for receive and yield as well
        actor_wallet = requester_wallet
        target_wallet = requestee_wallet
        originator_id = originator_wallet["id"]

        orig_has_control_over_actor = await self.wallet_service.has_control_over(
            originator_id, actor_wallet["id"]
        )
        if not orig_has_control_over_actor:
            logger.warning(f"Wallet {originator_id} tried to request trust for {actor_wallet['id']}")
            raise HTTPException(status_code=403, detail="Have no permission to deal with this actor")

        orig_has_control_over_target = await self.wallet_service.has_control_over(
            originator_id, target_wallet["id"]
        )
        if (
            originator_id != actor_wallet["id"]
            and originator_id != target_wallet["id"]
            and orig_has_control_over_actor
            and orig_has_control_over_target
        ):
            raise HTTPException(
                status_code=409,
                detail="Cannot send trust relationship request to a sub wallet with the same parent"
            )

        if await self.wallet_service.has_control_over(actor_wallet["id"], target_wallet["id"]):
            raise HTTPException(
                status_code=409,
                detail="The requesting wallet already manages the target wallet"
            )

        if originator_id == target_wallet["id"] and orig_has_control_over_actor:
            raise HTTPException(
                status_code=409,
                detail="The requesting wallet is managed by the target wallet"
            )

        now = datetime.now(timezone.utc)
        trust_relationship = {
            "type": get_trust_type_by_request_type(trust_request_type),
            "request_type": trust_request_type,
            "actor_wallet_id": actor_wallet["id"],
            "originator_wallet_id": originator_id,
            "target_wallet_id": target_wallet["id"],
            "state": TrustState.requested,
            "active": True,
            "created_at": now,
            "updated_at": now
        }
        await self.check_duplicate_request(trust_relationship)

        try:
            result = await self.trust_repository.create(trust_relationship)
        except DuplicateKeyError:
            # A concurrent identical request won the race past the pre-check
            raise HTTPException(
                status_code=409,
                detail="The trust relationship has been requested or trusted"
            )

        logger.info(
            f"Trust relationship {result['id']} requested: {trust_request_type} "
            f"{actor_wallet['id']} -> {target_wallet['id']}"
        )
        return {
            "id": result["id"],
            "actor_wallet": actor_wallet["name"],
            "originator_wallet": originator_wallet["name"],
            "target_wallet": target_wallet["name"],
            "type": result["type"],
            "request_type": result["request_type"],
            "state": result["state"],
            "created_at": result["created_at"],
            "updated_at": result["updated_at"],
            "active": result["active"],
            "actor_wallet_id": actor_wallet["id"],
            "originator_wallet_id": originator_id,
            "target_wallet_id": target_wallet["id"]
        }

    async def check_duplicate_request(self, trust_relationship: Dict[str, Any]) -> None:
        """
        Reject a request that repeats or mirrors an active relationship.

        A relationship is a duplicate when an active one has the same request
        type, actor and target, and a mirror when an active one has a
        different request type with actor and target swapped.
        """
        if trust_relationship["type"] not in (TrustType.send, TrustType.manage):
            logger.error(f"Unsupported trust type reached duplicate check: {trust_relationship['type']}")
            raise HTTPException(status_code=500, detail="Not supported type")

        actor_id = trust_relationship["actor_wallet_id"]
        target_id = trust_relationship["target_wallet_id"]
        request_type = trust_relationship["request_type"]

        existing = await self.trust_repository.get_by_filter(
            And(
                In("state", TrustState.ACTIVE),
                Or(
                    And(
                        Eq("request_type", request_type),
                        Eq("actor_wallet_id", actor_id),
                        Eq("target_wallet_id", target_id)
                    ),
                    And(
                        Ne("request_type", request_type),
                        Eq("actor_wallet_id", target_id),
                        Eq("target_wallet_id", actor_id)
                    )
                )
            ),
            limit=1
        )
        if existing:
            logger.debug("Has duplicated trust")
            raise HTTPException(
                status_code=409,
                detail="The trust relationship has been requested or trusted"
            )
        logger.debug("Has no duplicated trust")

    async def check_manage_circle(self, trust_relationship: Dict[str, Any]) -> None:
        """
        Reject accepting a manage-type relationship that would close a management loop.

        Accepting ``manage`` actor->target makes actor control target, and
        ``yield`` actor->target makes target control actor. Either is refused
        if the would-be controlled wallet already controls the other one.
        """
        if trust_relationship["type"] != TrustType.manage:
            return

        actor_id = trust_relationship["actor_wallet_id"]
        target_id = trust_relationship["target_wallet_id"]
        request_type = trust_relationship["request_type"]

        if request_type == TrustRequestType.manage:
            blocking = Or(
                And(
                    Eq("request_type", TrustRequestType.manage),
                    Eq("actor_wallet_id", target_id),
                    Eq("target_wallet_id", actor_id)
                ),
                And(
                    Eq("request_type", TrustRequestType.yield_),
                    Eq("actor_wallet_id", actor_id),
                    Eq("target_wallet_id", target_id)
                )
            )
            controller_id, controlled_id = actor_id, target_id
        elif request_type == TrustRequestType.yield_:
            blocking = Or(
                And(
                    Eq("request_type", TrustRequestType.yield_),
                    Eq("actor_wallet_id", target_id),
                    Eq("target_wallet_id", actor_id)
                ),
                And(
                    Eq("request_type", TrustRequestType.manage),
                    Eq("actor_wallet_id", actor_id),
                    Eq("target_wallet_id", target_id)
                )
            )
            controller_id, controlled_id = target_id, actor_id
        else:
            return

        direct = await self.trust_repository.get_by_filter(
            And(Eq("state", TrustState.trusted), Eq("type", TrustType.manage), blocking),
            limit=1
        )
        if direct or await self.wallet_service.has_control_over(controlled_id, controller_id):
            logger.warning(f"Management circle refused for trust relationship {trust_relationship.get('id')}")
            raise HTTPException(status_code=409, detail=MANAGEMENT_CIRCLE_MESSAGE)

    async def get_trust_relationships_requested_to_me(self, wallet_id: str) -> List[Dict[str, Any]]:
        """
        Get every relationship targeting the wallet or a wallet it manages.

        Args:
            wallet_id: The logged-in wallet

        Returns:
            List of relationships, any state
        """
        wallet_ids = [wallet_id] + await self.wallet_service.get_sub_wallet_ids(wallet_id)
        relationships = await self.trust_repository.get_by_filter(
            In("target_wallet_id", wallet_ids),
            sort_by="created_at",
            order="desc"
        )
        return relationships

    async def _get_requested_to_me(self, trust_relationship_id: str, wallet_id: str) -> Dict[str, Any]:
        relationships = await self.get_trust_relationships_requested_to_me(wallet_id)
        for relationship in relationships:
            if relationship["id"] == trust_relationship_id:
                return relationship
        raise HTTPException(status_code=404, detail=NOT_REQUESTED_TO_ME_MESSAGE)

    async def update_trust_state(
        self,
        trust_relationship: Dict[str, Any],
        state: str,
        allowed_states: Iterable[str] = (TrustState.requested,)
    ) -> Dict[str, Any]:
        """
        Move a relationship to a new state if it is still in an allowed one.

        Args:
            trust_relationship: The relationship to update
            state: The new state
            allowed_states: States the relationship may currently be in

        Returns:
            The updated relationship

        Raises:
            HTTPException: 409 if the relationship already left the allowed states
        """
        allowed_states = list(allowed_states)
        updated = await self.trust_repository.update_where(
            And(Eq("_id", trust_relationship["id"]), In("state", allowed_states)),
            {
                "state": state,
                "active": state in TrustState.ACTIVE,
                "updated_at": datetime.now(timezone.utc)
            }
        )
        if not updated:
            raise HTTPException(
                status_code=409,
                detail=(
                    f"Stale state transition: trust relationship {trust_relationship['id']} "
                    f"is no longer {' or '.join(allowed_states)}"
                )
            )
        logger.info(f"Trust relationship {updated['id']} is now {state}")
        return {**trust_relationship, **updated}

    async def accept_trust_request_sent_to_me(self, trust_relationship_id: str, wallet_id: str) -> Dict[str, Any]:
        """
        Accept a trust request addressed to the wallet or one it manages.

        Manage-type relationships are checked for a management circle before
        and again after they become trusted. A concurrent acceptance that
        closed a loop in between is caught by the second check, which puts
        the relationship back to requested.
        """
        trust_relationship = await self._get_requested_to_me(trust_relationship_id, wallet_id)
        await self.check_manage_circle(trust_relationship)
        updated = await self.update_trust_state(trust_relationship, TrustState.trusted)

        if updated["type"] == TrustType.manage:
            try:
                await self.check_manage_circle(updated)
            except HTTPException:
                await self.trust_repository.update_where(
                    And(Eq("_id", updated["id"]), Eq("state", TrustState.trusted)),
                    {
                        "state": TrustState.requested,
                        "active": True,
                        "updated_at": datetime.now(timezone.utc)
                    }
                )
                logger.warning(f"Trust relationship {updated['id']} reverted to requested")
                raise

        [updated] = await self._with_wallet_names([updated])
        return updated

    async def decline_trust_request_sent_to_me(self, trust_relationship_id: str, wallet_id: str) -> Dict[str, Any]:
        """Decline a trust request addressed to the wallet or one it manages."""
        trust_relationship = await self._get_requested_to_me(trust_relationship_id, wallet_id)
        updated = await self.update_trust_state(trust_relationship, TrustState.canceled_by_target)
        [updated] = await self._with_wallet_names([updated])
        return updated

    async def cancel_trust_request(self, trust_relationship_id: str, wallet_id: str) -> Dict[str, Any]:
        """
        Cancel a relationship the wallet originated, whether still requested or already trusted.
        """
        trust_relationship = await self.trust_repository.get_by_id(trust_relationship_id)
        if not trust_relationship:
            raise HTTPException(
                status_code=404,
                detail=f"Cannot find trust relationship by id: {trust_relationship_id}"
            )

        if trust_relationship["originator_wallet_id"] != wallet_id:
            raise HTTPException(status_code=403, detail="Have no permission to cancel this relationship")

        updated = await self.update_trust_state(
            trust_relationship,
            TrustState.cancelled_by_originator,
            allowed_states=TrustState.ACTIVE
        )
        [updated] = await self._with_wallet_names([updated])
        return updated

    async def has_trust(
        self,
        wallet_id: str,
        trust_type: str,
        sender_wallet: Dict[str, Any],
        receiver_wallet: Dict[str, Any]
    ) -> bool:
        """
        Check whether tokens may flow from sender to receiver without approval.

        Either a trusted ``send`` relationship sender->receiver or a trusted
        ``receive`` relationship receiver->sender is enough.

        The answer depends only on the sender/receiver pair. ``wallet_id``
        (the asking wallet) is used for logging and does not scope the lookup,
        and ``trust_type`` is only validated: both directions above are
        always considered.

        Raises:
            HTTPException: 500 if ``trust_type`` is not a known request type
        """
        if trust_type not in TrustRequestType.ALL:
            logger.error(f"has_trust called with invalid trust type: {trust_type}")
            raise HTTPException(status_code=500, detail=f"Invalid trust type: {trust_type}")

        relationships = await self.trust_repository.get_by_filter(
            And(
                Eq("state", TrustState.trusted),
                Or(
                    And(
                        Eq("request_type", TrustRequestType.send),
                        Eq("actor_wallet_id", sender_wallet["id"]),
                        Eq("target_wallet_id", receiver_wallet["id"])
                    ),
                    And(
                        Eq("request_type", TrustRequestType.receive),
                        Eq("actor_wallet_id", receiver_wallet["id"]),
                        Eq("target_wallet_id", sender_wallet["id"])
                    )
                )
            ),
            limit=1
        )
        if relationships:
            logger.debug(f"check trust passed for wallet {wallet_id}")
            return True
        return False

    async def get_trust_relationship_by_id(self, wallet_id: str, trust_relationship_id: str) -> Dict[str, Any]:
        """Get a relationship the wallet is involved in, directly or through a managed wallet."""
        trust_relationship = await self.trust_repository.get_by_id(trust_relationship_id)
        if not trust_relationship:
            raise HTTPException(
                status_code=404,
                detail=f"Cannot find trust relationship by id: {trust_relationship_id}"
            )

        for key in ("actor_wallet_id", "target_wallet_id", "originator_wallet_id"):
            if await self.wallet_service.has_control_over(wallet_id, trust_relationship[key]):
                [trust_relationship] = await self._with_wallet_names([trust_relationship])
                return trust_relationship

        raise HTTPException(status_code=403, detail="Have no permission to get this relationship")
