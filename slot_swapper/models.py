# models.py
import sqlalchemy
from slot_swapper.database import metadata

PENDING_ONLY = sqlalchemy.text("status = 'PENDING'")

#'users' table
users = sqlalchemy.Table(
    "users",
    metadata,
    sqlalchemy.Column("id", sqlalchemy.Integer, primary_key=True),
    sqlalchemy.Column("name", sqlalchemy.String, nullable=False),
    sqlalchemy.Column("email", sqlalchemy.String, unique=True, index=True, nullable=False),
    sqlalchemy.Column("hashed_password", sqlalchemy.String, nullable=False),
    sqlalchemy.Column("created_at", sqlalchemy.DateTime(timezone=True), nullable=False),
)

#'events' table: the calendar slots
events = sqlalchemy.Table(
    "events",
    metadata,
    sqlalchemy.Column("id", sqlalchemy.Integer, primary_key=True),
    sqlalchemy.Column("user_id", sqlalchemy.Integer, sqlalchemy.ForeignKey("users.id"), index=True, nullable=False),
    sqlalchemy.Column("title", sqlalchemy.String, nullable=False),
    sqlalchemy.Column("start_time", sqlalchemy.DateTime(timezone=True), nullable=False),
    sqlalchemy.Column("end_time", sqlalchemy.DateTime(timezone=True), nullable=False),
    sqlalchemy.Column("status", sqlalchemy.String(20), nullable=False, default="BUSY", index=True),
    sqlalchemy.Column("created_at", sqlalchemy.DateTime(timezone=True), nullable=False),
    sqlalchemy.Column("updated_at", sqlalchemy.DateTime(timezone=True), nullable=False),
    sqlalchemy.CheckConstraint("start_time < end_time", name="check_event_time_range"),
    sqlalchemy.CheckConstraint("status IN ('BUSY', 'SWAPPABLE', 'SWAP_PENDING')", name="check_event_status"),
)

swap_requests = sqlalchemy.Table(
    "swap_requests",
    metadata,
    sqlalchemy.Column("id", sqlalchemy.Integer, primary_key=True),
    sqlalchemy.Column("requester_id", sqlalchemy.Integer, sqlalchemy.ForeignKey("users.id"), index=True, nullable=False),
    sqlalchemy.Column("recipient_id", sqlalchemy.Integer, sqlalchemy.ForeignKey("users.id"), index=True, nullable=False),
    sqlalchemy.Column(
        "requester_slot_id", sqlalchemy.Integer,
        sqlalchemy.ForeignKey("events.id", ondelete="CASCADE"), nullable=False,
    ),
    sqlalchemy.Column(
        "recipient_slot_id", sqlalchemy.Integer,
        sqlalchemy.ForeignKey("events.id", ondelete="CASCADE"), nullable=False,
    ),
    sqlalchemy.Column("status", sqlalchemy.String(20), nullable=False, default="PENDING"),
    sqlalchemy.Column("created_at", sqlalchemy.DateTime(timezone=True), nullable=False),
    sqlalchemy.Column("updated_at", sqlalchemy.DateTime(timezone=True), nullable=False),
    sqlalchemy.CheckConstraint("status IN ('PENDING', 'ACCEPTED', 'REJECTED')", name="check_swap_status"),

    # A slot can sit in at most one PENDING request per role
    sqlalchemy.Index(
        "uq_pending_requester_slot", "requester_slot_id", unique=True,
        sqlite_where=PENDING_ONLY, postgresql_where=PENDING_ONLY,
    ),
    sqlalchemy.Index(
        "uq_pending_recipient_slot", "recipient_slot_id", unique=True,
        sqlite_where=PENDING_ONLY, postgresql_where=PENDING_ONLY,
    ),
)
