"""
Persistence helpers for users, scans, chat sessions and chat messages.

Every write commits on its own; there is no transaction spanning two calls.
Partial updates go through an explicit, closed set of updatable fields per
entity so request payloads can never name arbitrary columns.
"""

from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from database import User, Scan, ChatSession, Chat
from shared import DEFAULT_SESSION_TITLE, MESSAGE_TYPE_TEXT

# Columns that profile updates may touch
USER_UPDATABLE_FIELDS = frozenset({"username", "birthdate", "password"})

# Columns that session updates may touch
SESSION_UPDATABLE_FIELDS = frozenset({"title"})


def _check_fields(fields: Iterable[str], allowed: frozenset, entity: str):
    unknown = set(fields) - allowed
    if unknown:
        raise ValueError(f"Fields not updatable on {entity}: {', '.join(sorted(unknown))}")


# =============================================================================
# USERS
# =============================================================================

def get_user(db: Session, uid: str) -> Optional[User]:
    return db.query(User).filter(User.uid == uid).first()


def get_user_by_username(db: Session, username: str) -> Optional[User]:
    return db.query(User).filter(User.username == username).first()


def username_exists(db: Session, username: str) -> bool:
    return get_user_by_username(db, username) is not None


def create_user(db: Session, uid: str, username: str, email: Optional[str] = None,
                photo_url: Optional[str] = None) -> User:
    """Insert a user row. Raises IntegrityError on a uid or username conflict."""
    user = User(uid=uid, username=username, email=email)
    if photo_url:
        user.photo_url = photo_url
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def update_user(db: Session, uid: str, **fields) -> Optional[User]:
    """
    Apply a partial profile update.

    Only keys in USER_UPDATABLE_FIELDS are accepted; None values are skipped.
    Returns None when the user does not exist.
    """
    _check_fields(fields, USER_UPDATABLE_FIELDS, "user")
    user = get_user(db, uid)
    if not user:
        return None
    for name, value in fields.items():
        if value is not None:
            setattr(user, name, value)
    db.commit()
    db.refresh(user)
    return user


def set_user_photo(db: Session, uid: str, photo_url: str) -> Optional[User]:
    user = get_user(db, uid)
    if not user:
        return None
    user.photo_url = photo_url
    db.commit()
    db.refresh(user)
    return user


def delete_user(db: Session, user: User):
    db.delete(user)
    db.commit()


# =============================================================================
# SCANS
# =============================================================================

def get_scan(db: Session, scan_id: str) -> Optional[Scan]:
    return db.query(Scan).filter(Scan.scan_id == scan_id).first()


def scan_id_exists(db: Session, scan_id: str) -> bool:
    return get_scan(db, scan_id) is not None


def create_scan(db: Session, scan_id: str, photo_url: str, scan_result: bool,
                confidence: float, result_source: str, scan_date: datetime) -> Scan:
    scan = Scan(
        scan_id=scan_id,
        photo_url=photo_url,
        scan_result=scan_result,
        confidence=confidence,
        result_source=result_source,
        scan_date=scan_date,
    )
    db.add(scan)
    db.commit()
    db.refresh(scan)
    return scan


def list_scans(db: Session) -> List[Scan]:
    return db.query(Scan).order_by(Scan.scan_date.desc()).all()


def find_latest_scan_for_user(db: Session, uid: str) -> Optional[Scan]:
    """Most recent scan whose photo file name carries the user's id."""
    return (
        db.query(Scan)
        .filter(Scan.photo_url.contains(f"scan-{uid}"))
        .order_by(Scan.scan_date.desc())
        .first()
    )


def update_scan_result(db: Session, scan_id: str, scan_result: bool) -> Optional[Scan]:
    """Legacy correction path: rewrites the verdict column only."""
    scan = get_scan(db, scan_id)
    if not scan:
        return None
    scan.scan_result = scan_result
    db.commit()
    db.refresh(scan)
    return scan


# =============================================================================
# CHAT SESSIONS
# =============================================================================

def get_session(db: Session, session_id: str) -> Optional[ChatSession]:
    return db.query(ChatSession).filter(ChatSession.session_id == session_id).first()


def create_session(db: Session, session_id: str, user_id: str,
                   title: str = DEFAULT_SESSION_TITLE) -> ChatSession:
    now = datetime.utcnow()
    session = ChatSession(
        session_id=session_id,
        user_id=user_id,
        title=title,
        created_at=now,
        updated_at=now,
    )
    db.add(session)
    db.commit()
    db.refresh(session)
    return session


def list_sessions(db: Session, user_id: str) -> List[ChatSession]:
    return (
        db.query(ChatSession)
        .filter(ChatSession.user_id == user_id)
        .order_by(ChatSession.updated_at.desc())
        .all()
    )


def _advance(session: ChatSession):
    # updated_at must move forward even when the clock has not
    now = datetime.utcnow()
    previous = session.updated_at
    if previous is not None and now <= previous:
        now = previous + timedelta(microseconds=1)
    session.updated_at = now


def touch_session(db: Session, session: ChatSession) -> ChatSession:
    _advance(session)
    db.commit()
    db.refresh(session)
    return session


def update_session(db: Session, session: ChatSession, **fields) -> ChatSession:
    """Apply a partial update limited to SESSION_UPDATABLE_FIELDS."""
    _check_fields(fields, SESSION_UPDATABLE_FIELDS, "chat session")
    for name, value in fields.items():
        if value is not None:
            setattr(session, name, value)
    _advance(session)
    db.commit()
    db.refresh(session)
    return session


def delete_session(db: Session, session: ChatSession) -> int:
    """Delete a session's messages, then the session. Returns messages removed."""
    removed = (
        db.query(Chat)
        .filter(Chat.session_id == session.session_id)
        .delete(synchronize_session=False)
    )
    db.delete(session)
    db.commit()
    return removed


# =============================================================================
# CHAT MESSAGES
# =============================================================================

def add_message(db: Session, session_id: str, sender: str, message: str,
                photo_url: Optional[str] = None, type: str = MESSAGE_TYPE_TEXT) -> Chat:
    chat = Chat(
        session_id=session_id,
        sender=sender,
        message=message,
        photo_url=photo_url,
        type=type,
        timestamp=datetime.utcnow(),
    )
    db.add(chat)
    db.commit()
    db.refresh(chat)
    return chat


def get_messages(db: Session, session_id: str) -> List[Chat]:
    """Messages of a session in insertion order."""
    return (
        db.query(Chat)
        .filter(Chat.session_id == session_id)
        .order_by(Chat.timestamp.asc(), Chat.chat_id.asc())
        .all()
    )
