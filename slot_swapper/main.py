# main.py
import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

import fastapi
from fastapi import Depends, HTTPException, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from slot_swapper.auth import (
    User,
    authenticate_user,
    create_user,
    get_current_active_user,
    get_user_by_email,
    get_user_from_token,
    token_for,
)
from slot_swapper.commands import CommandAPI
from slot_swapper.config import ENVIRONMENT, FRONTEND_URL, LOG_LEVEL
from slot_swapper.database import database, engine, metadata
from slot_swapper.errors import SlotSwapError
from slot_swapper.notifications import NotificationFanout
from slot_swapper.schemas import (
    EventCreate,
    EventUpdate,
    LoginRequest,
    StatusUpdate,
    SwapRequestCreate,
    SwapResponseCreate,
    UserCreate,
)

# Configure logging
logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

manager = NotificationFanout()
commands = CommandAPI(notifier=manager)


@asynccontextmanager
async def lifespan(app: fastapi.FastAPI):
    await database.connect()
    # Create tables if they don't exist
    metadata.create_all(bind=engine)
    logger.info(f"SlotSwapper API started ({ENVIRONMENT})")
    yield
    await database.disconnect()
    logger.info("SlotSwapper API shut down")


#FastAPI Setup
app = fastapi.FastAPI(title="SlotSwapper API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[FRONTEND_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(SlotSwapError)
async def slot_swap_error_handler(request: Request, exc: SlotSwapError):
    logger.warning(f"{request.method} {request.url.path} refused: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.get("/health")
async def health():
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "environment": ENVIRONMENT,
    }

@app.get("/api")
async def api_index():
    return {
        "message": "SlotSwapper API",
        "version": "1.0.0",
        "endpoints": {
            "auth": "/api/auth",
            "events": "/api/events",
            "swaps": "/api/swappable-slots, /api/swap-request, /api/swap-requests, /api/swap-response",
            "notifications": "/ws",
        },
    }


# Auth Endpoints
@app.post("/api/auth/register", status_code=status.HTTP_201_CREATED)
async def register_user(user: UserCreate):
    if await get_user_by_email(user.email):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="User with this email already exists"
        )

    created = await create_user(user)
    logger.info(f"Registered user {created.id}")
    return {"message": "User registered successfully", "user": created, "token": token_for(created)}

@app.post("/api/auth/login")
async def login(credentials: LoginRequest):
    user = await authenticate_user(credentials.email, credentials.password)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return {"message": "Login successful", "user": user, "token": token_for(user)}

@app.get("/api/auth/me")
async def read_users_me(current_user: User = Depends(get_current_active_user)):
    """
    Get the current authenticated user's profile data.
    """
    return {"user": current_user}


# Slot Endpoints
@app.get("/api/events")
async def get_user_events(current_user: User = Depends(get_current_active_user)):
    return {"events": await commands.list_slots(current_user.id)}

@app.post("/api/events", status_code=status.HTTP_201_CREATED)
async def create_event(event: EventCreate, current_user: User = Depends(get_current_active_user)):
    created = await commands.create_slot(current_user.id, event.title, event.start_time, event.end_time)
    return {"message": "Event created successfully", "event": created}

@app.put("/api/events/{event_id}")
async def update_event(event_id: int, event: EventUpdate, current_user: User = Depends(get_current_active_user)):
    updated = await commands.update_slot(current_user.id, event_id, event.model_dump(exclude_unset=True))
    return {"message": "Event updated successfully", "event": updated}

@app.delete("/api/events/{event_id}")
async def delete_event(event_id: int, current_user: User = Depends(get_current_active_user)):
    await commands.delete_slot(current_user.id, event_id)
    return {"message": "Event deleted successfully"}

@app.patch("/api/events/{event_id}/status")
async def toggle_event_status(event_id: int, body: StatusUpdate, current_user: User = Depends(get_current_active_user)):
    updated = await commands.set_swap_eligibility(current_user.id, event_id, body.status)
    return {"message": "Event status updated successfully", "event": updated}


# Swap Endpoints
@app.get("/api/swappable-slots")
async def get_swappable_slots(current_user: User = Depends(get_current_active_user)):
    return {"slots": await commands.list_marketplace(current_user.id)}

@app.post("/api/swap-request", status_code=status.HTTP_201_CREATED)
async def create_swap_request(body: SwapRequestCreate, current_user: User = Depends(get_current_active_user)):
    swap_request = await commands.request_swap(current_user.id, body.my_slot_id, body.their_slot_id)
    return {"message": "Swap request created successfully", "swapRequest": swap_request}

@app.get("/api/swap-requests")
async def get_swap_requests(current_user: User = Depends(get_current_active_user)):
    requests = await commands.list_swap_requests(current_user.id)
    return {"incoming": requests.incoming, "outgoing": requests.outgoing}

@app.post("/api/swap-response/{request_id}")
async def respond_to_swap_request(request_id: int, body: SwapResponseCreate, current_user: User = Depends(get_current_active_user)):
    decision = await commands.respond_to_swap(current_user.id, request_id, body.accept)
    message = "Swap request accepted successfully" if body.accept else "Swap request rejected"
    return {"message": message, "swapRequest": decision.swap_request, "updatedEvents": decision.updated_events}


@app.websocket("/ws")
async def websocket_endpoint(websocket: fastapi.WebSocket, token: Optional[str] = Query(None)):
    """
    Authenticates the connection and joins it to the user's own channel.
    The socket then only carries the notification feed; any "ping" is answered with "pong".
    """
    if token is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    try:
        current_user = await get_user_from_token(token)
    except HTTPException:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await manager.connect(websocket)
    manager.join(current_user.id, websocket)

    await websocket.send_text(json.dumps({
        "type": "auth_success",
        "data": {"id": current_user.id, "name": current_user.name, "email": current_user.email}
    }))

    try:
        while True:
            data = await websocket.receive_text()
            try:
                message = json.loads(data)
            except json.JSONDecodeError:
                await websocket.send_text(json.dumps({"type": "error", "data": "Messages must be JSON"}))
                continue

            if isinstance(message, dict) and message.get("type") == "ping":
                await websocket.send_text(json.dumps({"type": "pong"}))

    except fastapi.WebSocketDisconnect:
        manager.disconnect(websocket)
