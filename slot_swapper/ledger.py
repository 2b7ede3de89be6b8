# ledger.py
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import sqlalchemy
from databases import Database

from slot_swapper.data_models import OWNER_SETTABLE_STATUSES, SlotStatus, SwapStatus
from slot_swapper.database import as_utc, database, utcnow
from slot_swapper.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from slot_swapper.models import events, swap_requests, users
from slot_swapper.notifications import EVENT_CREATED, EVENT_DELETED, EVENT_UPDATED, NotificationFanout
from slot_swapper.schemas import Event, MarketplaceSlot, UserSummary

logger = logging.getLogger(__name__)


def event_from_row(row) -> Event:
    return Event(
        id=row["id"],
        user_id=row["user_id"],
        title=row["title"],
        start_time=as_utc(row["start_time"]),
        end_time=as_utc(row["end_time"]),
        status=row["status"],
        created_at=as_utc(row["created_at"]),
        updated_at=as_utc(row["updated_at"]),
    )


def _clean_title(title: Optional[str]) -> str:
    title = (title or "").strip()
    if not title:
        raise ValidationError("Title is required")
    return title


def _check_time_range(start_time: datetime, end_time: datetime):
    if end_time <= start_time:
        raise ValidationError("End time must be after start time")


def _owner_settable(status: Any) -> SlotStatus:
    try:
        status = SlotStatus(status)
    except ValueError:
        raise ValidationError(f"Unknown slot status: {status}")
    if status not in OWNER_SETTABLE_STATUSES:
        raise ValidationError("Status must be BUSY or SWAPPABLE")
    return status


class SlotLedger:
    """Owns the events table: slot creation, edits, eligibility toggles and the marketplace view."""

    def __init__(self, notifier: NotificationFanout, db: Database = database):
        self.notifier = notifier
        self.database = db

    async def get_slot(self, slot_id: int) -> Event:
        row = await self.database.fetch_one(events.select().where(events.c.id == slot_id))
        if row is None:
            raise NotFoundError("Event not found")
        return event_from_row(row)

    async def _get_owned_slot(self, owner_id: int, slot_id: int, action: str) -> Event:
        event = await self.get_slot(slot_id)
        if event.user_id != owner_id:
            raise AuthorizationError(f"Not authorized to {action} this event")
        return event

    async def create_slot(self, owner_id: int, title: str, start_time: datetime, end_time: datetime) -> Event:
        title = _clean_title(title)
        start_time, end_time = as_utc(start_time), as_utc(end_time)
        _check_time_range(start_time, end_time)

        now = utcnow()
        query = events.insert().values(
            user_id=owner_id,
            title=title,
            start_time=start_time,
            end_time=end_time,
            status=SlotStatus.BUSY.value,
            created_at=now,
            updated_at=now,
        )
        event_id = await self.database.execute(query)
        event = await self.get_slot(event_id)
        logger.info(f"User {owner_id} created slot {event.id} ({event.title})")

        await self.notifier.broadcast_all(EVENT_CREATED, {"event": event, "userId": owner_id})
        return event

    async def list_slots(self, owner_id: int) -> List[Event]:
        query = events.select().where(events.c.user_id == owner_id).order_by(events.c.start_time, events.c.id)
        rows = await self.database.fetch_all(query)
        return [event_from_row(row) for row in rows]

    async def update_slot(self, owner_id: int, slot_id: int, patch: Dict[str, Any]) -> Event:
        """
        Apply a partial edit of title, start_time, end_time and status.

        A slot under negotiation cannot be edited, and this path never moves a
        slot into or out of SWAP_PENDING.
        """
        current = await self._get_owned_slot(owner_id, slot_id, "update")
        if current.status == SlotStatus.SWAP_PENDING:
            raise ConflictError("Cannot edit an event while a swap is pending")

        values: Dict[str, Any] = {}
        if patch.get("title") is not None:
            values["title"] = _clean_title(patch["title"])
        if patch.get("start_time") is not None:
            values["start_time"] = as_utc(patch["start_time"])
        if patch.get("end_time") is not None:
            values["end_time"] = as_utc(patch["end_time"])
        if patch.get("status") is not None:
            values["status"] = _owner_settable(patch["status"]).value
        _check_time_range(values.get("start_time", current.start_time), values.get("end_time", current.end_time))

        values["updated_at"] = utcnow()
        event = await self._write_unless_pending(slot_id, values)
        logger.info(f"User {owner_id} updated slot {slot_id}")

        await self.notifier.broadcast_all(EVENT_UPDATED, {"event": event, "userId": owner_id})
        return event

    async def delete_slot(self, owner_id: int, slot_id: int):
        current = await self._get_owned_slot(owner_id, slot_id, "delete")
        if current.status == SlotStatus.SWAP_PENDING:
            raise ConflictError("Cannot delete an event while a swap is pending")

        async with self.database.transaction():
            delete_query = events.delete().where(
                events.c.id == slot_id,
                events.c.status != SlotStatus.SWAP_PENDING.value,
            )
            await self.database.execute(delete_query)
            if await self.database.fetch_one(events.select().where(events.c.id == slot_id)) is not None:
                raise ConflictError("Cannot delete an event while a swap is pending")

            # Resolved requests that referenced the slot go with it
            history_query = swap_requests.delete().where(
                sqlalchemy.or_(
                    swap_requests.c.requester_slot_id == slot_id,
                    swap_requests.c.recipient_slot_id == slot_id,
                ),
                swap_requests.c.status != SwapStatus.PENDING.value,
            )
            await self.database.execute(history_query)

        logger.info(f"User {owner_id} deleted slot {slot_id}")
        await self.notifier.broadcast_all(EVENT_DELETED, {"eventId": slot_id, "userId": owner_id})

    async def set_swap_eligibility(self, owner_id: int, slot_id: int, target: Any) -> Event:
        """Toggle a slot between BUSY and SWAPPABLE. Slots under negotiation are refused for every caller."""
        target = _owner_settable(target)
        current = await self.get_slot(slot_id)
        if current.status == SlotStatus.SWAP_PENDING:
            raise ConflictError("Cannot change status while swap is pending")
        if current.user_id != owner_id:
            raise AuthorizationError("Not authorized to update this event")

        event = await self._write_unless_pending(slot_id, {"status": target.value, "updated_at": utcnow()})
        logger.info(f"User {owner_id} marked slot {slot_id} as {target.value}")

        await self.notifier.broadcast_all(EVENT_UPDATED, {"event": event, "userId": owner_id})
        return event

    async def _write_unless_pending(self, slot_id: int, values: Dict[str, Any]) -> Event:
        # The engine may have claimed the slot since it was loaded; the write only lands if it has not.
        async with self.database.transaction():
            query = events.update().where(
                events.c.id == slot_id,
                events.c.status != SlotStatus.SWAP_PENDING.value,
            ).values(**values)
            await self.database.execute(query)
            event = await self.get_slot(slot_id)
            if event.status == SlotStatus.SWAP_PENDING:
                raise ConflictError("Cannot change an event while a swap is pending")
        return event

    async def list_marketplace(self, exclude_owner_id: int) -> List[MarketplaceSlot]:
        query = sqlalchemy.select(
            events,
            users.c.name.label("owner_name"),
            users.c.email.label("owner_email"),
        ).select_from(
            events.join(users, events.c.user_id == users.c.id)
        ).where(
            events.c.status == SlotStatus.SWAPPABLE.value,
            events.c.user_id != exclude_owner_id,
        ).order_by(events.c.start_time, events.c.id)
        rows = await self.database.fetch_all(query)

        return [
            MarketplaceSlot(
                **event_from_row(row).model_dump(),
                owner=UserSummary(id=row["user_id"], name=row["owner_name"], email=row["owner_email"]),
            )
            for row in rows
        ]
