# schemas.py
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field

from slot_swapper.data_models import SlotStatus, SwapStatus


# Users

class UserSummary(BaseModel):
    id: int
    name: str
    email: str


class UserCreate(BaseModel):
    email: EmailStr
    password: str = Field(min_length=6)
    name: str = Field(min_length=2)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1)


# Slots

class Event(BaseModel):
    id: int
    user_id: int
    title: str
    start_time: datetime
    end_time: datetime
    status: SlotStatus
    created_at: datetime
    updated_at: datetime


class MarketplaceSlot(Event):
    """A swappable slot annotated with its owner's identity."""
    owner: UserSummary


class EventCreate(BaseModel):
    title: str = Field(min_length=1)
    start_time: datetime
    end_time: datetime


class EventUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    status: Optional[SlotStatus] = None


class StatusUpdate(BaseModel):
    status: SlotStatus


# Swaps

class SwapRequestCreate(BaseModel):
    my_slot_id: int = Field(gt=0)
    their_slot_id: int = Field(gt=0)


class SwapResponseCreate(BaseModel):
    accept: bool


class SwapRequestDetail(BaseModel):
    id: int
    requester_id: int
    recipient_id: int
    requester_slot_id: int
    recipient_slot_id: int
    status: SwapStatus
    created_at: datetime
    updated_at: datetime
    requester: UserSummary
    recipient: UserSummary
    requester_slot: Event
    recipient_slot: Event


class SwapRequestLists(BaseModel):
    incoming: List[SwapRequestDetail]
    outgoing: List[SwapRequestDetail]


class SwapDecision(BaseModel):
    swap_request: SwapRequestDetail
    # Both slots after an accepted swap; None when the request was rejected
    updated_events: Optional[List[Event]] = None
