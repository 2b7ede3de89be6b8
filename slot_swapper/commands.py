# commands.py
from datetime import datetime
from typing import Any, Dict, List, Optional

from databases import Database

from slot_swapper.database import database
from slot_swapper.ledger import SlotLedger
from slot_swapper.negotiation import SwapNegotiationEngine
from slot_swapper.notifications import NotificationFanout
from slot_swapper.schemas import Event, MarketplaceSlot, SwapDecision, SwapRequestDetail, SwapRequestLists


class CommandAPI:
    """
    The operations callers (the HTTP handlers) invoke.

    Each method returns its result or raises a SlotSwapError subclass; the
    caller's identity is always the first argument.
    """

    def __init__(self, notifier: Optional[NotificationFanout] = None, db: Database = database):
        self.notifier = notifier or NotificationFanout()
        self.ledger = SlotLedger(self.notifier, db)
        self.engine = SwapNegotiationEngine(self.notifier, db)

    # Slot ledger

    async def create_slot(self, owner_id: int, title: str, start_time: datetime, end_time: datetime) -> Event:
        return await self.ledger.create_slot(owner_id, title, start_time, end_time)

    async def list_slots(self, owner_id: int) -> List[Event]:
        return await self.ledger.list_slots(owner_id)

    async def update_slot(self, owner_id: int, slot_id: int, patch: Dict[str, Any]) -> Event:
        return await self.ledger.update_slot(owner_id, slot_id, patch)

    async def delete_slot(self, owner_id: int, slot_id: int):
        await self.ledger.delete_slot(owner_id, slot_id)

    async def set_swap_eligibility(self, owner_id: int, slot_id: int, target: Any) -> Event:
        return await self.ledger.set_swap_eligibility(owner_id, slot_id, target)

    async def list_marketplace(self, caller_id: int) -> List[MarketplaceSlot]:
        return await self.ledger.list_marketplace(caller_id)

    # Swap negotiation

    async def request_swap(self, requester_id: int, my_slot_id: int, their_slot_id: int) -> SwapRequestDetail:
        return await self.engine.request_swap(requester_id, my_slot_id, their_slot_id)

    async def list_swap_requests(self, caller_id: int) -> SwapRequestLists:
        return await self.engine.list_swap_requests(caller_id)

    async def respond_to_swap(self, recipient_id: int, request_id: int, accept: bool) -> SwapDecision:
        return await self.engine.respond_to_swap(recipient_id, request_id, accept)
