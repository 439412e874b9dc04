import pytest
from fastapi import HTTPException


class TestTokenListing:
    """Test suite for token listing and pagination."""

    @pytest.mark.asyncio
    async def test_start_is_one_based(self, token_service, make_wallet, make_tokens):
        wallet = await make_wallet("holder")
        await make_tokens(wallet, 4, ids=["id3", "id4", "id5", "id6"])

        tokens = await token_service.get_tokens_by_wallet(wallet["id"], start=2, limit=3)

        assert [t["id"] for t in tokens] == ["id4", "id5", "id6"]

    @pytest.mark.asyncio
    async def test_window_in_the_middle(self, token_service, make_wallet, make_tokens):
        wallet = await make_wallet("holder")
        await make_tokens(wallet, 10, ids=[f"id{i}" for i in range(10)])

        tokens = await token_service.get_tokens_by_wallet(wallet["id"], start=5, limit=3)

        assert [t["id"] for t in tokens] == ["id4", "id5", "id6"]

    @pytest.mark.asyncio
    async def test_out_of_range_windows(self, token_service, make_wallet, make_tokens):
        wallet = await make_wallet("holder")
        await make_tokens(wallet, 3)

        assert await token_service.get_tokens_by_wallet(wallet["id"], start=0, limit=3) == []
        assert await token_service.get_tokens_by_wallet(wallet["id"], start=10, limit=3) == []
        assert len(await token_service.get_tokens_by_wallet(wallet["id"], start=2, limit=10)) == 2

    @pytest.mark.asyncio
    async def test_count_token_by_wallet(self, token_service, make_wallet, make_tokens):
        wallet = await make_wallet("holder")
        other = await make_wallet("other")
        await make_tokens(wallet, 3)
        await make_tokens(other, 1)

        assert await token_service.count_token_by_wallet(wallet["id"]) == 3

    @pytest.mark.asyncio
    async def test_get_tokens_of_managed_wallet(self, token_service, make_wallet, make_manage, make_tokens):
        parent = await make_wallet("parent")
        child = await make_wallet("child")
        stranger = await make_wallet("stranger")
        await make_manage(parent, child)
        await make_tokens(child, 2)

        result = await token_service.get_tokens(parent["id"], wallet="child")
        assert result["count"] == 2

        with pytest.raises(HTTPException) as exc_info:
            await token_service.get_tokens(parent["id"], wallet=stranger["id"])
        assert exc_info.value.status_code == 403

    @pytest.mark.asyncio
    async def test_get_token_hides_foreign_tokens(self, token_service, make_wallet, make_tokens):
        owner = await make_wallet("owner")
        stranger = await make_wallet("stranger")
        [token] = await make_tokens(owner, 1)

        assert (await token_service.get_token(owner["id"], token["id"]))["id"] == token["id"]

        with pytest.raises(HTTPException) as exc_info:
            await token_service.get_token(stranger["id"], token["id"])
        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_get_tokens_by_bundle(self, token_service, make_wallet, make_tokens):
        wallet = await make_wallet("holder")
        tokens = await make_tokens(wallet, 3)

        bundle = await token_service.get_tokens_by_bundle(wallet["id"], 2)
        assert [t["id"] for t in bundle] == [tokens[0]["id"], tokens[1]["id"]]

        with pytest.raises(HTTPException) as exc_info:
            await token_service.get_tokens_by_bundle(wallet["id"], 4)
        assert exc_info.value.status_code == 403
        assert exc_info.value.detail == "Do not have enough tokens to send"


class TestTokenLocks:
    """Test suite for custody locks."""

    @pytest.mark.asyncio
    async def test_lock_tokens(self, token_service, token_repo, make_wallet, make_tokens):
        wallet = await make_wallet("holder")
        tokens = await make_tokens(wallet, 2)

        locked = await token_service.lock_tokens([t["id"] for t in tokens], wallet["id"], "transfer-1")

        assert len(locked) == 2
        for token in tokens:
            stored = await token_repo.get_by_id(token["id"])
            assert stored["transfer_pending"] is True
            assert stored["transfer_id"] == "transfer-1"

    @pytest.mark.asyncio
    async def test_failed_lock_releases_partial_lock(self, token_service, token_repo, make_wallet, make_tokens):
        wallet = await make_wallet("holder")
        first, second = await make_tokens(wallet, 2)
        await token_service.lock_tokens([first["id"]], wallet["id"], "transfer-1")

        with pytest.raises(HTTPException) as exc_info:
            await token_service.lock_tokens([second["id"], first["id"]], wallet["id"], "transfer-2")
        assert exc_info.value.status_code == 409

        assert (await token_repo.get_by_id(second["id"]))["transfer_pending"] is False
        assert (await token_repo.get_by_id(first["id"]))["transfer_id"] == "transfer-1"

    @pytest.mark.asyncio
    async def test_cannot_lock_foreign_token(self, token_service, make_wallet, make_tokens):
        owner = await make_wallet("owner")
        thief = await make_wallet("thief")
        [token] = await make_tokens(owner, 1)

        with pytest.raises(HTTPException) as exc_info:
            await token_service.lock_tokens([token["id"]], thief["id"], "transfer-1")
        assert exc_info.value.status_code == 409

    @pytest.mark.asyncio
    async def test_bundle_shortfall_locks_nothing(self, token_service, token_repo, make_wallet, make_tokens):
        wallet = await make_wallet("holder")
        await make_tokens(wallet, 3)

        with pytest.raises(HTTPException) as exc_info:
            await token_service.lock_bundle(wallet["id"], 5, "transfer-1")
        assert exc_info.value.status_code == 403

        locked = await token_service.get_locked_tokens("transfer-1")
        assert locked == []
        assert await token_repo.count_by_filter({"transfer_pending": True}) == 0

    @pytest.mark.asyncio
    async def test_lock_bundle_takes_oldest_free(self, token_service, make_wallet, make_tokens):
        wallet = await make_wallet("holder")
        tokens = await make_tokens(wallet, 4)
        await token_service.lock_tokens([tokens[0]["id"]], wallet["id"], "transfer-1")

        locked = await token_service.lock_bundle(wallet["id"], 2, "transfer-2")

        assert [t["id"] for t in locked] == [tokens[1]["id"], tokens[2]["id"]]

    @pytest.mark.asyncio
    async def test_complete_and_release(self, token_service, token_repo, make_wallet, make_tokens):
        sender = await make_wallet("sender")
        receiver = await make_wallet("receiver")
        tokens = await make_tokens(sender, 3)
        await token_service.lock_tokens([tokens[0]["id"], tokens[1]["id"]], sender["id"], "transfer-1")
        await token_service.lock_tokens([tokens[2]["id"]], sender["id"], "transfer-2")

        moved = await token_service.complete_locked_tokens({
            "id": "transfer-1",
            "sender_wallet_id": sender["id"],
            "receiver_wallet_id": receiver["id"],
            "claim": True
        })
        released = await token_service.release_tokens("transfer-2")

        assert len(moved) == 2
        assert released == 1
        assert await token_service.count_token_by_wallet(receiver["id"]) == 2
        assert (await token_repo.get_by_id(tokens[2]["id"]))["transfer_pending"] is False

        history = await token_service.get_transactions(tokens[0]["id"])
        assert len(history) == 1
        assert history[0]["source_wallet_id"] == sender["id"]
        assert history[0]["destination_wallet_id"] == receiver["id"]
        assert history[0]["claim"] is True
