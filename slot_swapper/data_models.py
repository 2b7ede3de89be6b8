# data_models.py
from enum import Enum


class SlotStatus(str, Enum):
    """Exchange eligibility of a calendar slot."""
    BUSY = "BUSY"
    SWAPPABLE = "SWAPPABLE"
    SWAP_PENDING = "SWAP_PENDING"


# Statuses an owner may set directly; SWAP_PENDING belongs to the negotiation engine
OWNER_SETTABLE_STATUSES = (SlotStatus.BUSY, SlotStatus.SWAPPABLE)


class SwapStatus(str, Enum):
    """Lifecycle of a swap request. ACCEPTED and REJECTED are terminal."""
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
