"""
Chat orchestration pipeline.

Creates chat sessions around a user's scan, relays messages to the
conversational gateway and stores both sides of every exchange. The gateway
keeps no state between calls, so each send rebuilds the full message
history from the database.
"""

import uuid
from datetime import date
from typing import List, Optional, Tuple

from fastapi import HTTPException, status
from sqlalchemy.orm import Session

import stores
from chat_handle_cache import ChatHandleCache
from database import Chat, ChatSession, Scan
from gemini_service import GeminiService
from models import ChatSessionResponse
from shared import (
    APOLOGY_MESSAGE,
    MESSAGE_TYPE_IMAGE,
    SCAN_IMAGE_MESSAGE,
    SENDER_AI,
    SENDER_USER,
    WELCOME_MESSAGE,
    read_image,
)
from structured_logging import get_logger, log_security_event

logger = get_logger(__name__)

GREETING_INSTRUCTION = (
    "Start your reply with a short, friendly greeting to the user, then "
    "explain what this result means in simple terms and give practical "
    "advice on preventing or managing anemia. End by inviting the user to "
    "ask follow-up questions."
)


# =============================================================================
# HELPERS
# =============================================================================

def calculate_age(birthdate: date, today: Optional[date] = None) -> int:
    """Whole years since birthdate; one less if this year's birthday is still ahead."""
    today = today or date.today()
    age = today.year - birthdate.year
    if (today.month, today.day) < (birthdate.month, birthdate.day):
        age -= 1
    return age


def verdict_label(scan: Scan) -> str:
    return "Anemic" if scan.scan_result else "Not anemic"


def build_scan_prompt(scan: Scan, age: Optional[int] = None) -> str:
    """Opening prompt describing a scan for a new session."""
    lines = [
        "Here is the result of my eye conjunctiva scan for anemia detection.",
        f"Scan ID: {scan.scan_id}",
        f"Photo: {scan.photo_url}",
        f"Result: {verdict_label(scan)}",
        f"Scan date: {scan.scan_date.strftime('%d %B %Y')}",
    ]
    if age is not None:
        lines.append(f"Age: {age} years")
    lines.append("")
    lines.append(GREETING_INSTRUCTION)
    return "\n".join(lines)


def reply_or_apology(reply: Optional[str]) -> str:
    """Blank replies (usually filtered upstream) are replaced by a fixed apology."""
    if reply is None or not reply.strip():
        logger.warning("Empty reply from conversational gateway, substituting apology")
        return APOLOGY_MESSAGE
    return reply


def get_owned_session(db: Session, session_id: str, user_id: str, action: str = "access") -> ChatSession:
    """Load a session, 404 when missing and 403 when owned by someone else."""
    session = stores.get_session(db, session_id)
    if not session:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Chat session not found")
    if session.user_id != user_id:
        log_security_event(
            "cross_user_session_access",
            "high",
            user_id=user_id,
            details=f"attempted to {action} chat session {session_id}",
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Unauthorized: You can only {action} your own chat sessions",
        )
    return session


# =============================================================================
# SESSION START
# =============================================================================

async def start_session_from_scan(
    db: Session,
    gemini: GeminiService,
    cache: ChatHandleCache,
    scan_id: str,
    user_id: str,
    today: Optional[date] = None,
) -> Tuple[ChatSession, List[Chat]]:
    """Open a session whose first exchange discusses the given scan."""
    scan = stores.get_scan(db, scan_id)
    if not scan:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Scan not found")

    age = None
    user = stores.get_user(db, user_id)
    if user and user.birthdate:
        age = calculate_age(user.birthdate, today)

    session = stores.create_session(db, session_id=str(uuid.uuid4()), user_id=user_id)
    handle = cache.get_or_create(session.session_id, gemini.initialize_chat)

    prompt = build_scan_prompt(scan, age)
    reply = reply_or_apology(await gemini.send_message(handle, prompt, history=[]))

    stores.add_message(db, session.session_id, SENDER_USER, prompt)
    stores.add_message(db, session.session_id, SENDER_AI, reply)
    session = stores.touch_session(db, session)

    logger.info(
        "Chat session started from scan",
        extra={"session_id": session.session_id, "scan_id": scan_id, "age_known": age is not None}
    )
    return session, stores.get_messages(db, session.session_id)


async def start_session(
    db: Session,
    gemini: GeminiService,
    cache: ChatHandleCache,
    user_id: str,
) -> Tuple[ChatSession, List[Chat]]:
    """
    Open a session for the caller's latest scan.

    Seeds three messages: the scan photo, the gateway's advice on the scan
    and a fixed welcome line.
    """
    scan = stores.find_latest_scan_for_user(db, user_id)
    if not scan:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No scan found for this user. Please upload a scan first."
        )

    session = stores.create_session(db, session_id=str(uuid.uuid4()), user_id=user_id)
    handle = cache.get_or_create(session.session_id, gemini.initialize_chat)

    stores.add_message(
        db, session.session_id, SENDER_USER, SCAN_IMAGE_MESSAGE,
        photo_url=scan.photo_url, type=MESSAGE_TYPE_IMAGE,
    )

    image = read_image(scan.photo_url)
    if image is None:
        logger.warning("Scan photo unreadable, priming without image", extra={"scan_id": scan.scan_id})
    advice = reply_or_apology(await gemini.provide_scan_context(handle, scan, image))

    stores.add_message(db, session.session_id, SENDER_AI, advice)
    stores.add_message(db, session.session_id, SENDER_AI, WELCOME_MESSAGE)
    session = stores.touch_session(db, session)

    logger.info("Chat session created", extra={"session_id": session.session_id, "scan_id": scan.scan_id})
    return session, stores.get_messages(db, session.session_id)


# =============================================================================
# CONVERSATION
# =============================================================================

async def send_message(
    db: Session,
    gemini: GeminiService,
    cache: ChatHandleCache,
    session_id: str,
    user_id: str,
    message: Optional[str],
) -> Tuple[Chat, Chat]:
    """Store the user's message, ask the gateway and store its reply."""
    session = get_owned_session(db, session_id, user_id)

    if not message or not message.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Message is required")

    user_message = stores.add_message(db, session_id, SENDER_USER, message)
    history = [m for m in stores.get_messages(db, session_id) if m.chat_id != user_message.chat_id]

    handle = cache.get_or_create(session_id, gemini.initialize_chat)
    reply = reply_or_apology(await gemini.send_message(handle, message, history=history))

    ai_message = stores.add_message(db, session_id, SENDER_AI, reply)
    stores.touch_session(db, session)
    return user_message, ai_message


def get_history(db: Session, session_id: str, user_id: str) -> Tuple[ChatSession, List[Chat]]:
    session = get_owned_session(db, session_id, user_id)
    return session, stores.get_messages(db, session_id)


def list_sessions(db: Session, user_id: str) -> List[ChatSession]:
    return stores.list_sessions(db, user_id)


def rename_session(db: Session, session_id: str, user_id: str, title: Optional[str]) -> ChatSession:
    if not title or not title.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Title is required")
    session = get_owned_session(db, session_id, user_id, action="update")
    return stores.update_session(db, session, title=title.strip())


def delete_session(db: Session, cache: ChatHandleCache, session_id: str, user_id: str) -> ChatSessionResponse:
    """Delete a session with its messages and drop its cached handle."""
    session = get_owned_session(db, session_id, user_id, action="delete")
    snapshot = ChatSessionResponse.model_validate(session)
    removed = stores.delete_session(db, session)
    cache.invalidate(session_id)
    logger.info("Chat session deleted", extra={"session_id": session_id, "messages_removed": removed})
    return snapshot
