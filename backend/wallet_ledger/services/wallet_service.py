from typing import Dict, Any, Iterable, List, Optional, Set
from datetime import datetime, timezone
import logging
from fastapi import HTTPException
from pymongo.errors import DuplicateKeyError

from wallet_ledger.repositories.wallet_repo import WalletRepository
from wallet_ledger.repositories.trust_repo import TrustRepository
from wallet_ledger.utilities.enums import TrustRequestType, TrustState, TrustType
from wallet_ledger.utilities.filters import And, Eq, ILike, In, Or

logger = logging.getLogger(__name__)


class WalletService:
    """
    Service for wallet lookups and the management hierarchy.

    A wallet controls another when a chain of trusted manage-type trust
    relationships leads from the first to the second. There is no stored
    parent pointer: control is recomputed from the relationships on every
    call, so it can never go stale.
    """

    def __init__(self, wallet_repository: WalletRepository, trust_repository: TrustRepository):
        """
        Initialize with wallet and trust repositories.

        Args:
            wallet_repository: Repository for wallet data access
            trust_repository: Repository for trust relationship data access
        """
        self.wallet_repository = wallet_repository
        self.trust_repository = trust_repository

    async def get_by_id(self, wallet_id: str) -> Dict[str, Any]:
        wallet = await self.wallet_repository.get_by_id(str(wallet_id))
        if not wallet:
            raise HTTPException(status_code=404, detail=f"Could not find wallet by id: {wallet_id}")
        return wallet

    async def get_by_name(self, name: str) -> Dict[str, Any]:
        wallet = await self.wallet_repository.get_by_name(name)
        if not wallet:
            raise HTTPException(status_code=404, detail=f"Could not find wallet by name: {name}")
        return wallet

    async def get_by_id_or_name(self, id_or_name: Any) -> Dict[str, Any]:
        """
        Resolve a wallet given either its id or its name.
        The id wins when a value matches both.
        """
        value = str(id_or_name)
        wallet = await self.wallet_repository.get_by_id(value)
        if not wallet:
            wallet = await self.wallet_repository.get_by_name(value)
        if not wallet:
            raise HTTPException(status_code=404, detail=f"Could not find wallet {value}")
        return wallet

    async def _get_managed_children(self, wallet_ids: Iterable[str]) -> Set[str]:
        """Wallets directly controlled by any of the given wallets."""
        wallet_ids = list(wallet_ids)
        relationships = await self.trust_repository.get_by_filter(
            And(
                Eq("state", TrustState.trusted),
                Eq("type", TrustType.manage),
                Or(
                    And(Eq("request_type", TrustRequestType.manage), In("actor_wallet_id", wallet_ids)),
                    And(Eq("request_type", TrustRequestType.yield_), In("target_wallet_id", wallet_ids))
                )
            ),
            sort_by=None
        )
        children = set()
        for relationship in relationships:
            if relationship["request_type"] == TrustRequestType.manage:
                children.add(relationship["target_wallet_id"])
            else:
                children.add(relationship["actor_wallet_id"])
        return children

    async def _walk_sub_wallets(self, wallet_id: str, stop_at: Optional[str] = None) -> List[str]:
        """
        Breadth-first walk over the management graph, one query per level.
        Stops early once ``stop_at`` is reached.
        """
        visited = {wallet_id}
        frontier = [wallet_id]
        found = []
        while frontier:
            children = await self._get_managed_children(frontier)
            frontier = sorted(child for child in children if child not in visited)
            visited.update(frontier)
            found.extend(frontier)
            if stop_at is not None and stop_at in visited:
                break
        return found

    async def has_control_over(self, controller_id: str, subject_id: str) -> bool:
        """
        Check whether one wallet controls another, directly or transitively.

        Args:
            controller_id: The would-be controlling wallet
            subject_id: The wallet being acted on

        Returns:
            True if controller_id is subject_id or manages it through the hierarchy
        """
        if controller_id == subject_id:
            return True
        sub_wallet_ids = await self._walk_sub_wallets(controller_id, stop_at=subject_id)
        return subject_id in sub_wallet_ids

    async def get_sub_wallet_ids(self, wallet_id: str) -> List[str]:
        """All wallets transitively controlled by a wallet, excluding itself."""
        return await self._walk_sub_wallets(wallet_id)

    async def get_all_wallets(
        self,
        wallet_id: str,
        name: Optional[str] = None,
        offset: int = 0,
        limit: Optional[int] = None
    ) -> Dict[str, Any]:
        """
        Get a wallet together with every wallet it manages.

        Args:
            wallet_id: The managing wallet
            name: Optional case-insensitive name substring
            offset: Number of wallets to skip
            limit: Maximum number of wallets to return

        Returns:
            Dict with the wallets and the total count before pagination
        """
        wallet_ids = [wallet_id] + await self.get_sub_wallet_ids(wallet_id)
        filter_ = And(
            In("_id", wallet_ids),
            ILike("name", f"%{name}%") if name else None
        )
        wallets = await self.wallet_repository.get_by_filter(filter_, offset=offset, limit=limit)
        count = await self.wallet_repository.count_by_filter(filter_)
        return {"wallets": wallets, "count": count}

    async def get_wallet(self, login_wallet_id: str, wallet_id: str) -> Dict[str, Any]:
        """
        Get a wallet visible to the logged-in wallet.
        Wallets outside its hierarchy are reported as not found.
        """
        wallet = await self.wallet_repository.get_by_id(wallet_id)
        if not wallet or not await self.has_control_over(login_wallet_id, wallet["id"]):
            raise HTTPException(status_code=404, detail=f"Could not find wallet by id: {wallet_id}")
        return wallet

    async def add_managed_wallet(self, login_wallet_id: str, name: str) -> Dict[str, Any]:
        """
        Create a sub-wallet managed by the logged-in wallet.

        Args:
            login_wallet_id: The managing wallet
            name: Unique name of the new wallet

        Returns:
            The new wallet
        """
        if await self.wallet_repository.get_by_name(name):
            raise HTTPException(status_code=409, detail=f"The wallet '{name}' already exists")

        try:
            wallet = await self.wallet_repository.create({"name": name})
        except DuplicateKeyError:
            raise HTTPException(status_code=409, detail=f"The wallet '{name}' already exists")

        now = datetime.now(timezone.utc)
        await self.trust_repository.create({
            "type": TrustType.manage,
            "request_type": TrustRequestType.manage,
            "actor_wallet_id": login_wallet_id,
            "target_wallet_id": wallet["id"],
            "originator_wallet_id": login_wallet_id,
            "state": TrustState.trusted,
            "active": True,
            "created_at": now,
            "updated_at": now
        })
        logger.info(f"Wallet {wallet['id']} created under manager {login_wallet_id}")
        return wallet
