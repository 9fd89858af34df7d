import logging
from typing import Generator, List, Optional

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker, Session, declarative_base

from enquiry_relay.config import settings
from enquiry_relay.errors import StoreError
from enquiry_relay.utils import utc_now_iso

logger = logging.getLogger(__name__)

UNKNOWN_USERNAME = "Unknown"

# check_same_thread=False is required for SQLite to work with FastAPI's async
connect_args = {"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(
    settings.DATABASE_URL,
    connect_args=connect_args,
    pool_pre_ping=True,
    echo=False,
)

# Create SessionLocal class for creating database sessions
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for SQLAlchemy models
Base = declarative_base()


def init_db() -> None:
    """
    Initialize the database by creating all tables.
    Called during application startup.
    """
    logger.debug("Initializing database")
    try:
        # Import models to register them with Base.metadata
        from enquiry_relay.models import Message, User  # noqa: F401

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
    Check if the database is reachable and both tables exist.

    Returns:
        True if DB is healthy and schema exists, False otherwise.
    """
    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
        tables = set(inspect(engine).get_table_names())
        missing = {"users", "messages"} - tables
        if missing:
            logger.error(f"Database schema not applied, missing tables: {sorted(missing)}")
            return False
        return True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False


def _insert_for(db: Session):
    """Pick the dialect insert construct that supports ON CONFLICT."""
    if db.get_bind().dialect.name == "postgresql":
        return postgresql.insert
    return sqlite.insert


# =============================================================================
# User Repository Functions
# =============================================================================

def upsert_user(
    db: Session,
    user_id: str,
    chat_id: str,
    username: Optional[str] = None,
    first_name: Optional[str] = None,
    last_name: Optional[str] = None,
):
    """
    Insert a user or refresh the existing row with the same user_id.

    chat_id, the display fields and last_interaction are overwritten on
    conflict. Missing display fields are stored as sentinels.

    Returns:
        The persisted User row.

    Raises:
        StoreError: the write failed
    """
    from enquiry_relay.models import User

    values = {
        "user_id": str(user_id),
        "chat_id": str(chat_id),
        "username": username or UNKNOWN_USERNAME,
        "first_name": first_name or "",
        "last_name": last_name or "",
        "last_interaction": utc_now_iso(),
    }
    logger.info(f"Upserting user: user_id={values['user_id']}, chat_id={values['chat_id']}")

    insert = _insert_for(db)
    stmt = insert(User).values(**values)
    stmt = stmt.on_conflict_do_update(
        index_elements=["user_id"],
        set_={key: stmt.excluded[key] for key in values if key != "user_id"},
    )
    try:
        db.execute(stmt)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to upsert user {values['user_id']}: {e}")
        raise StoreError("Failed to store user") from e

    return get_user_by_user_id(db, values["user_id"])


def get_user_by_user_id(db: Session, user_id: str):
    """
    Retrieve a user by platform identity.

    Returns:
        User object if found, None otherwise
    """
    from enquiry_relay.models import User

    try:
        result = db.query(User).filter(User.user_id == str(user_id)).first()
    except SQLAlchemyError as e:
        logger.error(f"Failed to look up user {user_id}: {e}")
        raise StoreError("Failed to fetch user") from e
    logger.debug(f"User lookup {user_id}: {'found' if result else 'not found'}")
    return result


def list_users(db: Session) -> List:
    """All users, most recently active first."""
    from enquiry_relay.models import User

    try:
        return (
            db.query(User)
            .order_by(User.last_interaction.desc(), User.id.desc())
            .all()
        )
    except SQLAlchemyError as e:
        logger.error(f"Failed to list users: {e}")
        raise StoreError("Failed to fetch users") from e


# =============================================================================
# Message Repository Functions
# =============================================================================

def insert_message(
    db: Session,
    user_id: str,
    chat_id: str,
    message_type: str,
    content: Optional[str],
    metadata: Optional[str] = None,
    sender_type: Optional[str] = None,
):
    """
    Append a message row. There is no update path.

    Args:
        db: Database session
        user_id: Sender (or, for operator sends, recipient) identity
        chat_id: Telegram chat the message belongs to
        message_type: "text" or "contact"
        content: Message body
        metadata: Serialized metadata JSON
        sender_type: "admin" for operator-originated messages

    Raises:
        StoreError: the write failed
    """
    from enquiry_relay.models import Message

    logger.info(f"Inserting {message_type} message for user_id={user_id}")
    message = Message(
        user_id=str(user_id),
        chat_id=str(chat_id),
        message_type=message_type,
        content=content,
        metadata_json=metadata,
        sender_type=sender_type,
        timestamp=utc_now_iso(),
    )
    try:
        db.add(message)
        db.commit()
        db.refresh(message)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to store message for user_id={user_id}: {e}")
        raise StoreError("Failed to store message") from e

    logger.debug(f"Message stored: id={message.id}")
    return message


def list_messages(db: Session) -> List:
    """All messages, newest first."""
    from enquiry_relay.models import Message

    try:
        return (
            db.query(Message)
            .order_by(Message.timestamp.desc(), Message.id.desc())
            .all()
        )
    except SQLAlchemyError as e:
        logger.error(f"Failed to list messages: {e}")
        raise StoreError("Failed to fetch messages") from e


def latest_message_for_user(db: Session, user_id: str):
    """
    Most recent message for a user by timestamp.

    Returns:
        Message object, or None if the user has no messages
    """
    from enquiry_relay.models import Message

    try:
        return (
            db.query(Message)
            .filter(Message.user_id == str(user_id))
            .order_by(Message.timestamp.desc(), Message.id.desc())
            .limit(1)
            .first()
        )
    except SQLAlchemyError as e:
        logger.error(f"Failed to fetch latest message for {user_id}: {e}")
        raise StoreError("Failed to fetch messages") from e
