import logging
import uuid
from datetime import date, datetime, timezone
from typing import Generator, Optional, Tuple

from sqlalchemy import create_engine, text, func, inspect, or_
from sqlalchemy.orm import sessionmaker, Session, declarative_base

from app.config import settings

logger = logging.getLogger(__name__)

# check_same_thread=False is required for SQLite since turns run in the threadpool
engine = create_engine(
    settings.DATABASE_URL,
    connect_args={"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {},
    echo=False,
)

# Create SessionLocal class for creating database sessions
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for SQLAlchemy models
Base = declarative_base()

REQUIRED_TABLES = (
    "conversations",
    "conversation_messages",
    "buildings",
    "valid_units",
    "active_pins",
)


def utc_timestamp(now: Optional[datetime] = None) -> str:
    """Format a moment as an ISO-8601 UTC string with Z suffix."""
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def init_db() -> None:
    """
    Initialize the database by creating all tables.
    Called during application startup.
    """
    logger.debug("Initializing database")
    try:
        # Import models to register them with Base.metadata
        from app import models  # noqa: F401

        Base.metadata.create_all(bind=engine)
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise


def get_db() -> Generator[Session, None, None]:
    """
    Dependency to get database session.
    Yields a session and ensures it's closed after use.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def check_db_health() -> bool:
    """
    Check if the database is reachable and schema is applied.

    Returns:
        True if DB is healthy and every table exists, False otherwise.
    """
    logger.debug("Checking database health...")
    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
        existing = set(inspect(engine).get_table_names())
        missing = [name for name in REQUIRED_TABLES if name not in existing]
        if missing:
            logger.error(f"Database schema not applied, missing tables: {missing}")
            return False
        return True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False


# =============================================================================
# Conversation Repository Functions
# =============================================================================
# These functions only add/flush. The caller owns the transaction so that a
# whole turn commits or rolls back together.

def get_active_conversation(db: Session, phone_number: str):
    """
    Return the newest conversation for a phone number that is not completed.

    Completed conversations are never resumed, so a number can have any
    number of completed conversations plus at most one active one.
    """
    from app.models import Conversation, ConversationState

    return (
        db.query(Conversation)
        .filter(Conversation.phone_number == phone_number)
        .filter(Conversation.state != ConversationState.COMPLETED.value)
        .order_by(Conversation.created_at.desc())
        .first()
    )


def create_conversation(db: Session, phone_number: str, company_name: str, now: datetime):
    from app.models import Conversation, ConversationState

    stamp = utc_timestamp(now)
    conversation = Conversation(
        id=str(uuid.uuid4()),
        phone_number=phone_number,
        company_name=company_name,
        state=ConversationState.AWAITING_INFO.value,
        created_at=stamp,
        updated_at=stamp,
    )
    db.add(conversation)
    db.flush()
    logger.info(f"Conversation created: id={conversation.id}")
    return conversation


def update_conversation(db: Session, conversation, now: datetime, **fields) -> None:
    """Apply field changes to a conversation and bump updated_at."""
    for name, value in fields.items():
        setattr(conversation, name, value)
    conversation.updated_at = utc_timestamp(now)
    db.flush()
    logger.debug(f"Conversation updated: id={conversation.id}, fields={sorted(fields)}")


def log_message(db: Session, conversation_id: str, direction: str, body: str, now: datetime):
    """
    Append one row to the conversation's audit trail.

    Args:
        db: Database session
        conversation_id: Owning conversation
        direction: "incoming" or "outgoing"
        body: Message text exactly as received or sent
        now: Moment of the turn
    """
    from app.models import ConversationMessage

    message = ConversationMessage(
        conversation_id=conversation_id,
        direction=direction,
        body=body,
        created_at=utc_timestamp(now),
    )
    db.add(message)
    db.flush()
    return message


def get_conversation_by_id(db: Session, conversation_id: str):
    from app.models import Conversation

    return db.query(Conversation).filter(Conversation.id == conversation_id).first()


def get_conversation_messages(db: Session, conversation_id: str) -> list:
    from app.models import ConversationMessage

    return (
        db.query(ConversationMessage)
        .filter(ConversationMessage.conversation_id == conversation_id)
        .order_by(ConversationMessage.id.asc())
        .all()
    )


def list_conversations(
    db: Session,
    limit: int = 50,
    offset: int = 0,
    state: Optional[str] = None,
    q: Optional[str] = None
) -> Tuple[list, int]:
    """
    Retrieve conversations with pagination and filtering.

    Args:
        db: Database session
        limit: Maximum number of conversations to return (1-100)
        offset: Number of conversations to skip
        state: Filter by stored state (exact match)
        q: Case-insensitive search across phone number, company name and unit

    Returns:
        Tuple of (conversations list, total count matching filters)
    """
    from app.models import Conversation

    logger.info(f"Querying conversations: limit={limit}, offset={offset}")
    logger.debug(f"Filters: state={state}, q={q}")

    query = db.query(Conversation)

    if state:
        query = query.filter(Conversation.state == state)

    if q:
        pattern = f"%{q}%"
        query = query.filter(or_(
            Conversation.phone_number.ilike(pattern),
            Conversation.company_name.ilike(pattern),
            Conversation.unit_number.ilike(pattern),
        ))

    total = query.count()

    # Newest first, id as tie-breaker for deterministic paging
    query = query.order_by(Conversation.created_at.desc(), Conversation.id.asc())

    conversations = query.offset(offset).limit(limit).all()
    logger.info(f"Retrieved {len(conversations)} of {total} total conversations")

    return conversations, total


def get_stats(db: Session) -> dict:
    """
    Get conversation statistics for the /stats endpoint.

    Returns:
        Dictionary with total_conversations, conversations_by_state,
        total_messages and pins_delivered
    """
    from app.models import Conversation, ConversationMessage

    logger.info("Computing conversation statistics")

    total_conversations = db.query(func.count(Conversation.id)).scalar() or 0

    rows = (
        db.query(Conversation.state, func.count(Conversation.id))
        .group_by(Conversation.state)
        .all()
    )
    conversations_by_state = {row[0]: row[1] for row in rows}

    total_messages = db.query(func.count(ConversationMessage.id)).scalar() or 0
    pins_delivered = (
        db.query(func.count(Conversation.id))
        .filter(Conversation.pin_delivered_at.isnot(None))
        .scalar()
        or 0
    )

    logger.info(f"Stats computed: {total_conversations} conversations, {total_messages} messages")

    return {
        "total_conversations": total_conversations,
        "conversations_by_state": conversations_by_state,
        "total_messages": total_messages,
        "pins_delivered": pins_delivered,
    }


# =============================================================================
# Directory Repository Functions
# =============================================================================

def get_valid_unit(db: Session, unit_number: str):
    from app.models import ValidUnit

    return db.query(ValidUnit).filter(ValidUnit.unit_number == unit_number).first()


def get_building_by_code(db: Session, building_code: str):
    from app.models import Building

    return db.query(Building).filter(Building.building_code == building_code).first()


def get_building_by_id(db: Session, building_id: str):
    from app.models import Building

    return db.query(Building).filter(Building.id == building_id).first()


def get_active_pin(db: Session, building_id: str, today: date):
    """
    Find the PIN whose validity window covers today for a building.

    Windows are inclusive on both ends. Overlapping live windows are not
    prevented by the schema; the most recently started one wins.
    """
    from app.models import ActivePin

    pin = (
        db.query(ActivePin)
        .filter(ActivePin.building_id == building_id)
        .filter(ActivePin.valid_from <= today)
        .filter(ActivePin.valid_until >= today)
        .order_by(ActivePin.valid_from.desc(), ActivePin.id.desc())
        .first()
    )
    logger.info(f"Active PIN lookup for building {building_id}: {'found' if pin else 'not found'}")
    return pin
