from typing import Optional


class TrustType:
    send = "send"
    manage = "manage"


class TrustRequestType:
    send = "send"
    receive = "receive"
    manage = "manage"
    # The actor yields management of itself to the target
    yield_ = "yield"

    ALL = (send, receive, manage, yield_)


class TrustState:
    requested = "requested"
    trusted = "trusted"
    canceled_by_target = "canceled_by_target"
    cancelled_by_originator = "cancelled_by_originator"

    ACTIVE = (requested, trusted)


class TransferState:
    requested = "requested"
    pending = "pending"
    completed = "completed"
    cancelled = "cancelled"
    rejected = "rejected"

    OPEN = (requested, pending)


def get_trust_type_by_request_type(request_type: str) -> Optional[str]:
    """Map a specific request type onto its broad trust category."""
    if request_type in (TrustRequestType.send, TrustRequestType.receive):
        return TrustType.send
    if request_type in (TrustRequestType.manage, TrustRequestType.yield_):
        return TrustType.manage
    return None
