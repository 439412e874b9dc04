import asyncio
import pytest
from unittest.mock import AsyncMock
from fastapi import HTTPException

from wallet_ledger.utilities.enums import TrustRequestType, TrustState, TrustType


async def request(trust_service, request_type, requester, requestee, originator=None):
    return await trust_service.request_trust_from_a_wallet(
        trust_request_type=request_type,
        requester_wallet=requester,
        requestee_wallet=requestee,
        originator_wallet=originator or requester
    )


class TestRequestTrust:
    """Test suite for creating trust requests."""

    @pytest.mark.asyncio
    async def test_request_creates_requested_relationship(self, trust_service, make_wallet):
        a = await make_wallet("a")
        b = await make_wallet("b")

        result = await request(trust_service, TrustRequestType.send, a, b)

        assert result["state"] == TrustState.requested
        assert result["type"] == TrustType.send
        assert result["actor_wallet_id"] == a["id"]
        assert result["target_wallet_id"] == b["id"]
        assert result["originator_wallet_id"] == a["id"]
        assert result["actor_wallet"] == "a"
        assert result["target_wallet"] == "b"
        assert result["active"] is True

    @pytest.mark.asyncio
    async def test_receive_and_yield_keep_requester_as_actor(self, trust_service, make_wallet):
        a = await make_wallet("a")
        b = await make_wallet("b")

        receive = await request(trust_service, TrustRequestType.receive, a, b)
        yield_ = await request(trust_service, TrustRequestType.yield_, a, b)

        assert receive["actor_wallet_id"] == a["id"]
        assert yield_["actor_wallet_id"] == a["id"]
        assert yield_["type"] == TrustType.manage

    @pytest.mark.asyncio
    async def test_second_identical_request_conflicts(self, trust_service, make_wallet):
        a = await make_wallet("a")
        b = await make_wallet("b")
        await request(trust_service, TrustRequestType.send, a, b)

        with pytest.raises(HTTPException) as exc_info:
            await request(trust_service, TrustRequestType.send, a, b)
        assert exc_info.value.status_code == 409
        assert exc_info.value.detail == "The trust relationship has been requested or trusted"

    @pytest.mark.asyncio
    async def test_mirrored_request_conflicts(self, trust_service, make_wallet):
        a = await make_wallet("a")
        b = await make_wallet("b")
        await request(trust_service, TrustRequestType.send, a, b)

        with pytest.raises(HTTPException) as exc_info:
            await request(trust_service, TrustRequestType.receive, b, a)
        assert exc_info.value.status_code == 409

    @pytest.mark.asyncio
    async def test_request_allowed_again_after_decline(self, trust_service, make_wallet):
        a = await make_wallet("a")
        b = await make_wallet("b")
        first = await request(trust_service, TrustRequestType.send, a, b)
        await trust_service.decline_trust_request_sent_to_me(first["id"], b["id"])

        second = await request(trust_service, TrustRequestType.send, a, b)
        assert second["id"] != first["id"]

    @pytest.mark.asyncio
    async def test_storage_backstop_reports_conflict(self, trust_service, make_wallet):
        a = await make_wallet("a")
        b = await make_wallet("b")
        await request(trust_service, TrustRequestType.send, a, b)

        # Simulate a concurrent request that passed the pre-check
        trust_service.check_duplicate_request = AsyncMock()
        with pytest.raises(HTTPException) as exc_info:
            await request(trust_service, TrustRequestType.send, a, b)
        assert exc_info.value.status_code == 409

    @pytest.mark.asyncio
    async def test_unsupported_type_is_internal_error(self, trust_service):
        with pytest.raises(HTTPException) as exc_info:
            await trust_service.check_duplicate_request({
                "type": None,
                "request_type": "borrow",
                "actor_wallet_id": "a",
                "target_wallet_id": "b"
            })
        assert exc_info.value.status_code == 500
        assert exc_info.value.detail == "Not supported type"

    @pytest.mark.asyncio
    async def test_originator_must_control_actor(self, trust_service, make_wallet):
        a = await make_wallet("a")
        b = await make_wallet("b")
        c = await make_wallet("c")

        with pytest.raises(HTTPException) as exc_info:
            await request(trust_service, TrustRequestType.send, a, b, originator=c)
        assert exc_info.value.status_code == 403
        assert exc_info.value.detail == "Have no permission to deal with this actor"

    @pytest.mark.asyncio
    async def test_sub_wallets_of_same_parent(self, trust_service, make_wallet, make_manage):
        parent = await make_wallet("parent")
        one = await make_wallet("one")
        two = await make_wallet("two")
        await make_manage(parent, one)
        await make_manage(parent, two)

        with pytest.raises(HTTPException) as exc_info:
            await request(trust_service, TrustRequestType.send, one, two, originator=parent)
        assert exc_info.value.status_code == 409
        assert "same parent" in exc_info.value.detail

    @pytest.mark.asyncio
    async def test_actor_already_manages_target(self, trust_service, make_wallet, make_manage):
        a = await make_wallet("a")
        b = await make_wallet("b")
        await make_manage(a, b)

        with pytest.raises(HTTPException) as exc_info:
            await request(trust_service, TrustRequestType.send, a, b)
        assert exc_info.value.status_code == 409
        assert exc_info.value.detail == "The requesting wallet already manages the target wallet"

    @pytest.mark.asyncio
    async def test_actor_managed_by_target(self, trust_service, make_wallet, make_manage):
        parent = await make_wallet("parent")
        child = await make_wallet("child")
        await make_manage(parent, child)

        with pytest.raises(HTTPException) as exc_info:
            await request(trust_service, TrustRequestType.send, child, parent, originator=parent)
        assert exc_info.value.status_code == 409
        assert exc_info.value.detail == "The requesting wallet is managed by the target wallet"

    @pytest.mark.asyncio
    async def test_manager_may_request_for_sub_wallet(self, trust_service, make_wallet, make_manage):
        parent = await make_wallet("parent")
        child = await make_wallet("child")
        other = await make_wallet("other")
        await make_manage(parent, child)

        result = await request(trust_service, TrustRequestType.send, child, other, originator=parent)

        assert result["actor_wallet_id"] == child["id"]
        assert result["originator_wallet_id"] == parent["id"]


class TestTrustStateMachine:
    """Test suite for accepting, declining and cancelling trust."""

    @pytest.mark.asyncio
    async def test_accept(self, trust_service, make_wallet):
        a = await make_wallet("a")
        b = await make_wallet("b")
        relationship = await request(trust_service, TrustRequestType.send, a, b)

        accepted = await trust_service.accept_trust_request_sent_to_me(relationship["id"], b["id"])

        assert accepted["state"] == TrustState.trusted
        assert accepted["active"] is True
        assert accepted["target_wallet"] == "b"

    @pytest.mark.asyncio
    async def test_accept_by_manager_of_target(self, trust_service, make_wallet, make_manage):
        a = await make_wallet("a")
        b = await make_wallet("b")
        manager = await make_wallet("manager")
        await make_manage(manager, b)
        relationship = await request(trust_service, TrustRequestType.send, a, b)

        accepted = await trust_service.accept_trust_request_sent_to_me(relationship["id"], manager["id"])
        assert accepted["state"] == TrustState.trusted

    @pytest.mark.asyncio
    async def test_accept_not_addressed_to_wallet(self, trust_service, make_wallet):
        a = await make_wallet("a")
        b = await make_wallet("b")
        relationship = await request(trust_service, TrustRequestType.send, a, b)

        # The requester cannot accept its own request
        with pytest.raises(HTTPException) as exc_info:
            await trust_service.accept_trust_request_sent_to_me(relationship["id"], a["id"])
        assert exc_info.value.status_code == 404
        assert "not associated with the current wallet" in exc_info.value.detail

    @pytest.mark.asyncio
    async def test_decline_then_accept_stays_declined(self, trust_service, trust_repo, make_wallet):
        a = await make_wallet("a")
        b = await make_wallet("b")
        relationship = await request(trust_service, TrustRequestType.send, a, b)

        declined = await trust_service.decline_trust_request_sent_to_me(relationship["id"], b["id"])
        assert declined["state"] == TrustState.canceled_by_target
        assert declined["active"] is False

        with pytest.raises(HTTPException) as exc_info:
            await trust_service.accept_trust_request_sent_to_me(relationship["id"], b["id"])
        assert exc_info.value.status_code == 409

        stored = await trust_repo.get_by_id(relationship["id"])
        assert stored["state"] == TrustState.canceled_by_target

    @pytest.mark.asyncio
    async def test_cancel_requires_originator(self, trust_service, make_wallet):
        a = await make_wallet("a")
        b = await make_wallet("b")
        relationship = await request(trust_service, TrustRequestType.send, a, b)

        with pytest.raises(HTTPException) as exc_info:
            await trust_service.cancel_trust_request(relationship["id"], b["id"])
        assert exc_info.value.status_code == 403
        assert exc_info.value.detail == "Have no permission to cancel this relationship"

    @pytest.mark.asyncio
    async def test_cancel_missing(self, trust_service):
        with pytest.raises(HTTPException) as exc_info:
            await trust_service.cancel_trust_request("missing", "a")
        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_originator_revokes_trusted_relationship(self, trust_service, wallet_service, make_wallet):
        a = await make_wallet("a")
        b = await make_wallet("b")
        relationship = await request(trust_service, TrustRequestType.manage, a, b)
        await trust_service.accept_trust_request_sent_to_me(relationship["id"], b["id"])
        assert await wallet_service.has_control_over(a["id"], b["id"]) is True

        cancelled = await trust_service.cancel_trust_request(relationship["id"], a["id"])

        assert cancelled["state"] == TrustState.cancelled_by_originator
        assert cancelled["active"] is False
        assert await wallet_service.has_control_over(a["id"], b["id"]) is False

    @pytest.mark.asyncio
    async def test_cancelled_is_terminal(self, trust_service, make_wallet):
        a = await make_wallet("a")
        b = await make_wallet("b")
        relationship = await request(trust_service, TrustRequestType.send, a, b)
        await trust_service.cancel_trust_request(relationship["id"], a["id"])

        with pytest.raises(HTTPException) as exc_info:
            await trust_service.cancel_trust_request(relationship["id"], a["id"])
        assert exc_info.value.status_code == 409


class TestManagementCircle:
    """Test suite for refusing management loops."""

    @pytest.mark.asyncio
    async def test_accepting_manage_of_own_manager(self, trust_service, make_wallet, make_manage):
        x = await make_wallet("x")
        y = await make_wallet("y")
        await make_manage(y, x)
        relationship = await request(trust_service, TrustRequestType.manage, x, y)

        with pytest.raises(HTTPException) as exc_info:
            await trust_service.accept_trust_request_sent_to_me(relationship["id"], y["id"])
        assert exc_info.value.status_code == 409
        assert exc_info.value.detail == "Operation forbidden, because this would lead to a management circle"

    @pytest.mark.asyncio
    async def test_accepting_yield_to_own_sub_wallet(self, trust_service, make_wallet, make_trust):
        x = await make_wallet("x")
        y = await make_wallet("y")
        relationship = await request(trust_service, TrustRequestType.yield_, x, y)
        # Meanwhile y yielded to x, so x controls y
        await make_trust(TrustRequestType.yield_, y, x)

        with pytest.raises(HTTPException) as exc_info:
            await trust_service.accept_trust_request_sent_to_me(relationship["id"], y["id"])
        assert exc_info.value.status_code == 409

    @pytest.mark.asyncio
    async def test_transitive_loop(self, trust_service, make_wallet, make_manage):
        a = await make_wallet("a")
        b = await make_wallet("b")
        c = await make_wallet("c")
        await make_manage(a, b)
        await make_manage(b, c)
        relationship = await request(trust_service, TrustRequestType.manage, c, a)

        with pytest.raises(HTTPException) as exc_info:
            await trust_service.accept_trust_request_sent_to_me(relationship["id"], a["id"])
        assert exc_info.value.status_code == 409

    @pytest.mark.asyncio
    async def test_opposite_manage_accepted_in_between(
        self, trust_service, wallet_service, trust_repo, make_wallet, monkeypatch
    ):
        x = await make_wallet("x")
        y = await make_wallet("y")
        x_manages_y = await request(trust_service, TrustRequestType.manage, x, y)
        y_manages_x = await request(trust_service, TrustRequestType.manage, y, x)

        check_manage_circle = trust_service.check_manage_circle
        other_side_accepted = []

        async def check_then_other_side_accepts(relationship):
            await check_manage_circle(relationship)
            if relationship["id"] == x_manages_y["id"] and not other_side_accepted:
                other_side_accepted.append(True)
                await trust_service.accept_trust_request_sent_to_me(y_manages_x["id"], x["id"])

        monkeypatch.setattr(trust_service, "check_manage_circle", check_then_other_side_accepts)

        with pytest.raises(HTTPException) as exc_info:
            await trust_service.accept_trust_request_sent_to_me(x_manages_y["id"], y["id"])
        assert exc_info.value.status_code == 409

        stored = await trust_repo.get_by_id(x_manages_y["id"])
        assert stored["state"] == TrustState.requested
        assert stored["active"] is True
        assert (await trust_repo.get_by_id(y_manages_x["id"]))["state"] == TrustState.trusted
        assert await wallet_service.has_control_over(y["id"], x["id"]) is True
        assert await wallet_service.has_control_over(x["id"], y["id"]) is False

    @pytest.mark.asyncio
    async def test_concurrent_opposite_manage_acceptances(
        self, trust_service, wallet_service, trust_repo, make_wallet
    ):
        x = await make_wallet("x")
        y = await make_wallet("y")
        x_manages_y = await request(trust_service, TrustRequestType.manage, x, y)
        y_manages_x = await request(trust_service, TrustRequestType.manage, y, x)

        results = await asyncio.gather(
            trust_service.accept_trust_request_sent_to_me(x_manages_y["id"], y["id"]),
            trust_service.accept_trust_request_sent_to_me(y_manages_x["id"], x["id"]),
            return_exceptions=True
        )

        for result in results:
            if isinstance(result, Exception):
                assert isinstance(result, HTTPException)
                assert result.status_code == 409
        states = [
            (await trust_repo.get_by_id(x_manages_y["id"]))["state"],
            (await trust_repo.get_by_id(y_manages_x["id"]))["state"]
        ]
        assert states.count(TrustState.trusted) <= 1
        assert not (
            await wallet_service.has_control_over(x["id"], y["id"])
            and await wallet_service.has_control_over(y["id"], x["id"])
        )

    @pytest.mark.asyncio
    async def test_circle_check_ignores_send_trust(self, trust_service):
        await trust_service.check_manage_circle({
            "id": "t1",
            "type": TrustType.send,
            "request_type": TrustRequestType.send,
            "actor_wallet_id": "a",
            "target_wallet_id": "b"
        })


class TestTrustQueries:
    """Test suite for trust lookups."""

    @pytest.mark.asyncio
    async def test_has_trust(self, trust_service, make_wallet, make_trust):
        a = await make_wallet("a")
        b = await make_wallet("b")
        c = await make_wallet("c")
        await make_trust(TrustRequestType.send, a, b)
        # c asks to receive from a
        await make_trust(TrustRequestType.receive, c, a)

        assert await trust_service.has_trust(a["id"], TrustRequestType.send, a, b) is True
        assert await trust_service.has_trust(b["id"], TrustRequestType.send, b, a) is False
        assert await trust_service.has_trust(c["id"], TrustRequestType.send, a, c) is True

    @pytest.mark.asyncio
    async def test_requested_trust_is_not_trust(self, trust_service, make_wallet, make_trust):
        a = await make_wallet("a")
        b = await make_wallet("b")
        await make_trust(TrustRequestType.send, a, b, state=TrustState.requested)

        assert await trust_service.has_trust(a["id"], TrustRequestType.send, a, b) is False

    @pytest.mark.asyncio
    async def test_has_trust_invalid_type(self, trust_service, wallet_a, wallet_b):
        with pytest.raises(HTTPException) as exc_info:
            await trust_service.has_trust("a", "borrow", wallet_a, wallet_b)
        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_get_trust_relationships(self, trust_service, make_wallet, make_manage, make_trust):
        parent = await make_wallet("parent")
        child = await make_wallet("child")
        friend = await make_wallet("friendly")
        stranger = await make_wallet("stranger")
        await make_manage(parent, child)
        await make_trust(TrustRequestType.send, child, friend)
        await make_trust(TrustRequestType.send, stranger, friend)

        result = await trust_service.get_trust_relationships(parent["id"], managed_wallets=[child])
        assert result["count"] == 2

        unmanaged = await trust_service.get_trust_relationships(
            parent["id"], managed_wallets=[child], exclude_managed=True
        )
        assert unmanaged["count"] == 1
        assert unmanaged["trust_relationships"][0]["target_wallet"] == "friendly"

        searched = await trust_service.get_trust_relationships(
            parent["id"], managed_wallets=[child], search="FRIEND"
        )
        assert searched["count"] == 1

        by_state = await trust_service.get_trust_relationships(parent["id"], state=TrustState.requested)
        assert by_state["count"] == 0

    @pytest.mark.asyncio
    async def test_get_trust_relationships_requested_to_me(self, trust_service, make_wallet, make_manage):
        a = await make_wallet("a")
        b = await make_wallet("b")
        manager = await make_wallet("manager")
        await make_manage(manager, b)
        relationship = await request(trust_service, TrustRequestType.send, a, b)

        to_manager = await trust_service.get_trust_relationships_requested_to_me(manager["id"])
        assert relationship["id"] in [r["id"] for r in to_manager]
        assert await trust_service.get_trust_relationships_requested_to_me(a["id"]) == []

    @pytest.mark.asyncio
    async def test_get_trust_relationship_by_id(self, trust_service, make_wallet):
        a = await make_wallet("a")
        b = await make_wallet("b")
        stranger = await make_wallet("stranger")
        relationship = await request(trust_service, TrustRequestType.send, a, b)

        found = await trust_service.get_trust_relationship_by_id(b["id"], relationship["id"])
        assert found["originator_wallet"] == "a"

        with pytest.raises(HTTPException) as exc_info:
            await trust_service.get_trust_relationship_by_id(stranger["id"], relationship["id"])
        assert exc_info.value.status_code == 403

        with pytest.raises(HTTPException) as exc_info:
            await trust_service.get_trust_relationship_by_id(a["id"], "missing")
        assert exc_info.value.status_code == 404
