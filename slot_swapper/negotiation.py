# negotiation.py
import logging
from contextlib import asynccontextmanager
from typing import Dict, Iterable, List, Tuple

import sqlalchemy
from databases import Database

from slot_swapper.data_models import SlotStatus, SwapStatus
from slot_swapper.database import as_utc, database, is_write_conflict, utcnow
from slot_swapper.errors import AuthorizationError, ConflictError, NotFoundError, SlotSwapError
from slot_swapper.ledger import event_from_row
from slot_swapper.models import events, swap_requests, users
from slot_swapper.notifications import (
    EVENT_UPDATED,
    SWAP_REQUEST_ACCEPTED,
    SWAP_REQUEST_RECEIVED,
    SWAP_REQUEST_REJECTED,
    NotificationFanout,
)
from slot_swapper.schemas import Event, SwapDecision, SwapRequestDetail, SwapRequestLists, UserSummary

logger = logging.getLogger(__name__)


class SwapNegotiationEngine:
    """
    The swap state machine.

    A request moves PENDING -> ACCEPTED | REJECTED and drags both of its slots
    along: SWAPPABLE -> SWAP_PENDING on request, then BUSY with exchanged
    owners on accept or back to SWAPPABLE on reject. Every transition runs in
    one transaction that first claims the rows it is about to judge, so two
    concurrent commands on the same slot (or the same request) are serialized
    by the store and the loser sees the winner's committed state.
    """

    def __init__(self, notifier: NotificationFanout, db: Database = database):
        self.notifier = notifier
        self.database = db

    @asynccontextmanager
    async def _critical_section(self):
        try:
            async with self.database.transaction():
                yield
        except SlotSwapError:
            raise
        except Exception as e:
            if not is_write_conflict(e):
                raise
            logger.warning(f"Concurrent swap write refused by the store: {e}")
            raise ConflictError("The slot is already involved in another swap, please refresh and retry") from e

    async def _claim_slots(self, *slot_ids: int):
        # Touching the rows takes their write locks; ascending id order keeps two claimers from deadlocking
        for slot_id in sorted(set(slot_ids)):
            await self.database.execute(
                events.update().where(events.c.id == slot_id).values(updated_at=utcnow())
            )

    async def _load_slot(self, slot_id: int, missing_message: str) -> Event:
        row = await self.database.fetch_one(events.select().where(events.c.id == slot_id))
        if row is None:
            raise NotFoundError(missing_message)
        return event_from_row(row)

    async def _has_pending_swap(self, slot_ids: Tuple[int, ...]) -> bool:
        query = swap_requests.select().where(
            swap_requests.c.status == SwapStatus.PENDING.value,
            sqlalchemy.or_(
                swap_requests.c.requester_slot_id.in_(slot_ids),
                swap_requests.c.recipient_slot_id.in_(slot_ids),
            ),
        ).limit(1)
        return await self.database.fetch_one(query) is not None

    async def _set_slot(self, slot_id: int, **values):
        values["updated_at"] = utcnow()
        await self.database.execute(events.update().where(events.c.id == slot_id).values(**values))

    async def request_swap(self, requester_id: int, my_slot_id: int, their_slot_id: int) -> SwapRequestDetail:
        if my_slot_id == their_slot_id:
            raise ConflictError("Cannot swap a slot with itself")

        async with self._critical_section():
            await self._claim_slots(my_slot_id, their_slot_id)

            my_slot = await self._load_slot(my_slot_id, "Your slot not found")
            their_slot = await self._load_slot(their_slot_id, "Requested slot not found")

            if my_slot.user_id != requester_id:
                raise AuthorizationError("You do not own this slot")
            if my_slot.status != SlotStatus.SWAPPABLE:
                raise ConflictError("Your slot must be marked as SWAPPABLE")
            if their_slot.user_id == requester_id:
                raise ConflictError("Cannot request swap with your own slot")
            if their_slot.status != SlotStatus.SWAPPABLE:
                raise ConflictError("Requested slot is not available for swapping")

            if await self._has_pending_swap((my_slot_id, their_slot_id)):
                raise ConflictError("One or both slots already have a pending swap request")

            await self._set_slot(my_slot_id, status=SlotStatus.SWAP_PENDING.value)
            await self._set_slot(their_slot_id, status=SlotStatus.SWAP_PENDING.value)

            now = utcnow()
            request_id = await self.database.execute(
                swap_requests.insert().values(
                    requester_id=requester_id,
                    recipient_id=their_slot.user_id,
                    requester_slot_id=my_slot_id,
                    recipient_slot_id=their_slot_id,
                    status=SwapStatus.PENDING.value,
                    created_at=now,
                    updated_at=now,
                )
            )

        swap_request = await self.get_swap_request(request_id)
        logger.info(
            f"Swap request {swap_request.id}: user {requester_id} offers slot {my_slot_id} "
            f"for slot {their_slot_id} of user {swap_request.recipient_id}"
        )

        await self.notifier.notify_user(swap_request.recipient_id, SWAP_REQUEST_RECEIVED, {
            "swapRequest": swap_request,
            "message": f"{swap_request.requester.name} wants to swap slots with you",
        })
        await self._broadcast_slots(swap_request)
        return swap_request

    async def respond_to_swap(self, recipient_id: int, request_id: int, accept: bool) -> SwapDecision:
        row = await self.database.fetch_one(swap_requests.select().where(swap_requests.c.id == request_id))
        if row is None:
            raise NotFoundError("Swap request not found")
        if row["recipient_id"] != recipient_id:
            raise AuthorizationError("You are not authorized to respond to this request")
        if row["status"] != SwapStatus.PENDING.value:
            raise ConflictError(f"This swap request has already been {row['status'].lower()}")

        async with self._critical_section():
            # Claim the request row, then judge it again under the lock
            await self.database.execute(
                swap_requests.update().where(swap_requests.c.id == request_id).values(updated_at=utcnow())
            )
            row = await self.database.fetch_one(swap_requests.select().where(swap_requests.c.id == request_id))
            if row["status"] != SwapStatus.PENDING.value:
                raise ConflictError(f"This swap request has already been {row['status'].lower()}")

            requester_slot = await self._load_slot(row["requester_slot_id"], "Requester slot not found")
            recipient_slot = await self._load_slot(row["recipient_slot_id"], "Recipient slot not found")
            if requester_slot.status != SlotStatus.SWAP_PENDING or recipient_slot.status != SlotStatus.SWAP_PENDING:
                raise ConflictError("The slots of this swap request are no longer pending")

            if accept:
                # Owners as they were before either write
                requester_owner = requester_slot.user_id
                recipient_owner = recipient_slot.user_id
                await self._set_slot(requester_slot.id, user_id=recipient_owner, status=SlotStatus.BUSY.value)
                await self._set_slot(recipient_slot.id, user_id=requester_owner, status=SlotStatus.BUSY.value)
                new_status = SwapStatus.ACCEPTED
            else:
                await self._set_slot(requester_slot.id, status=SlotStatus.SWAPPABLE.value)
                await self._set_slot(recipient_slot.id, status=SlotStatus.SWAPPABLE.value)
                new_status = SwapStatus.REJECTED

            await self.database.execute(
                swap_requests.update().where(swap_requests.c.id == request_id).values(
                    status=new_status.value, updated_at=utcnow(),
                )
            )

        swap_request = await self.get_swap_request(request_id)
        logger.info(f"Swap request {request_id} {new_status.value.lower()} by user {recipient_id}")

        if accept:
            updated_events = [swap_request.requester_slot, swap_request.recipient_slot]
            await self.notifier.notify_user(swap_request.requester_id, SWAP_REQUEST_ACCEPTED, {
                "swapRequest": swap_request,
                "message": f"{swap_request.recipient.name} accepted your swap request",
                "events": updated_events,
            })
        else:
            updated_events = None
            await self.notifier.notify_user(swap_request.requester_id, SWAP_REQUEST_REJECTED, {
                "swapRequest": swap_request,
                "message": f"{swap_request.recipient.name} rejected your swap request",
            })
        await self._broadcast_slots(swap_request)

        return SwapDecision(swap_request=swap_request, updated_events=updated_events)

    async def _broadcast_slots(self, swap_request: SwapRequestDetail):
        # Onlookers refresh their marketplace view from these
        for slot in (swap_request.requester_slot, swap_request.recipient_slot):
            await self.notifier.broadcast_all(EVENT_UPDATED, {"event": slot, "userId": slot.user_id})

    async def get_swap_request(self, request_id: int) -> SwapRequestDetail:
        row = await self.database.fetch_one(swap_requests.select().where(swap_requests.c.id == request_id))
        if row is None:
            raise NotFoundError("Swap request not found")
        return (await self._with_details([row]))[0]

    async def list_swap_requests(self, user_id: int) -> SwapRequestLists:
        newest_first = (sqlalchemy.desc(swap_requests.c.created_at), sqlalchemy.desc(swap_requests.c.id))
        incoming = await self.database.fetch_all(
            swap_requests.select().where(swap_requests.c.recipient_id == user_id).order_by(*newest_first)
        )
        outgoing = await self.database.fetch_all(
            swap_requests.select().where(swap_requests.c.requester_id == user_id).order_by(*newest_first)
        )
        return SwapRequestLists(
            incoming=await self._with_details(incoming),
            outgoing=await self._with_details(outgoing),
        )

    async def _with_details(self, rows: List) -> List[SwapRequestDetail]:
        """Attach both users and both slots (in their current state) to each request row."""
        if not rows:
            return []

        slot_ids = {row["requester_slot_id"] for row in rows} | {row["recipient_slot_id"] for row in rows}
        user_ids = {row["requester_id"] for row in rows} | {row["recipient_id"] for row in rows}
        slots = await self._slots_by_id(slot_ids)
        people = await self._users_by_id(user_ids)

        return [
            SwapRequestDetail(
                id=row["id"],
                requester_id=row["requester_id"],
                recipient_id=row["recipient_id"],
                requester_slot_id=row["requester_slot_id"],
                recipient_slot_id=row["recipient_slot_id"],
                status=row["status"],
                created_at=as_utc(row["created_at"]),
                updated_at=as_utc(row["updated_at"]),
                requester=people[row["requester_id"]],
                recipient=people[row["recipient_id"]],
                requester_slot=slots[row["requester_slot_id"]],
                recipient_slot=slots[row["recipient_slot_id"]],
            )
            for row in rows
        ]

    async def _slots_by_id(self, slot_ids: Iterable[int]) -> Dict[int, Event]:
        rows = await self.database.fetch_all(events.select().where(events.c.id.in_(list(slot_ids))))
        return {row["id"]: event_from_row(row) for row in rows}

    async def _users_by_id(self, user_ids: Iterable[int]) -> Dict[int, UserSummary]:
        query = sqlalchemy.select(users.c.id, users.c.name, users.c.email).where(users.c.id.in_(list(user_ids)))
        rows = await self.database.fetch_all(query)
        return {row["id"]: UserSummary(id=row["id"], name=row["name"], email=row["email"]) for row in rows}
