"""
Chat Router

Endpoints for the anemia advice assistant:
- Session creation (from the caller's latest scan or from a given scan)
- Sending messages and reading history
- Listing, renaming and deleting sessions

Every endpoint requires a bearer token and only touches the caller's own
sessions.
"""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

import chat_pipeline
from auth import IdentityClaims, get_current_user
from chat_handle_cache import ChatHandleCache, get_chat_handle_cache
from database import get_db
from gemini_service import GeminiService, get_gemini_service
from models import (
    ChatMessageCreate,
    ChatMessageResponse,
    ChatSessionFromScanCreate,
    ChatSessionRename,
    ChatSessionResponse,
)
from structured_logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/api/chat", tags=["AI Chat"])


def serialize_session(session) -> dict:
    return ChatSessionResponse.model_validate(session).model_dump(by_alias=True, mode="json")


def serialize_messages(messages) -> list:
    return [
        ChatMessageResponse.model_validate(message).model_dump(by_alias=True, mode="json")
        for message in messages
    ]


def _server_error(db: Session, action: str, e: Exception) -> HTTPException:
    db.rollback()
    logger.error(
        f"Failed to {action}",
        extra={"error_type": type(e).__name__, "error_message": str(e)},
        exc_info=True
    )
    return HTTPException(status_code=500, detail=f"Failed to {action}: {str(e)}")


# =============================================================================
# SESSION CREATION
# =============================================================================

@router.post("/sessions", status_code=status.HTTP_201_CREATED)
async def create_chat_session(
    current_user: IdentityClaims = Depends(get_current_user),
    db: Session = Depends(get_db),
    gemini: GeminiService = Depends(get_gemini_service),
    cache: ChatHandleCache = Depends(get_chat_handle_cache)
):
    """Start a session seeded with the caller's most recent scan."""
    try:
        session, messages = await chat_pipeline.start_session(db, gemini, cache, current_user.uid)
    except HTTPException:
        raise
    except Exception as e:
        raise _server_error(db, "create chat session", e)

    return {
        "error": False,
        "message": "Chat session created successfully",
        "data": {"session": serialize_session(session), "messages": serialize_messages(messages)}
    }


@router.post("/sessions/scan", status_code=status.HTTP_201_CREATED)
async def create_chat_session_from_scan(
    payload: ChatSessionFromScanCreate,
    current_user: IdentityClaims = Depends(get_current_user),
    db: Session = Depends(get_db),
    gemini: GeminiService = Depends(get_gemini_service),
    cache: ChatHandleCache = Depends(get_chat_handle_cache)
):
    """Start a session whose first exchange discusses the given scan."""
    try:
        session, messages = await chat_pipeline.start_session_from_scan(
            db, gemini, cache, payload.scan_id, current_user.uid
        )
    except HTTPException:
        raise
    except Exception as e:
        raise _server_error(db, "create chat session", e)

    return {
        "error": False,
        "message": "Chat session created successfully",
        "data": {"session": serialize_session(session), "messages": serialize_messages(messages)}
    }


# =============================================================================
# SESSION ENDPOINTS
# =============================================================================

@router.get("/sessions")
def get_user_chat_sessions(
    current_user: IdentityClaims = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    sessions = chat_pipeline.list_sessions(db, current_user.uid)
    return {
        "error": False,
        "message": "User chat sessions retrieved successfully",
        "data": {"sessions": [serialize_session(s) for s in sessions]}
    }


@router.get("/sessions/{session_id}")
def get_chat_history(
    session_id: str,
    current_user: IdentityClaims = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    session, messages = chat_pipeline.get_history(db, session_id, current_user.uid)
    return {
        "error": False,
        "message": "Chat history retrieved successfully",
        "data": {"session": serialize_session(session), "messages": serialize_messages(messages)}
    }


@router.patch("/sessions/{session_id}")
def rename_chat_session(
    session_id: str,
    payload: ChatSessionRename,
    current_user: IdentityClaims = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    try:
        session = chat_pipeline.rename_session(db, session_id, current_user.uid, payload.title)
    except HTTPException:
        raise
    except Exception as e:
        raise _server_error(db, "update chat session", e)

    return {
        "error": False,
        "message": "Chat session updated successfully",
        "data": {"session": serialize_session(session)}
    }


@router.delete("/sessions/{session_id}")
def delete_chat_session(
    session_id: str,
    current_user: IdentityClaims = Depends(get_current_user),
    db: Session = Depends(get_db),
    cache: ChatHandleCache = Depends(get_chat_handle_cache)
):
    try:
        snapshot = chat_pipeline.delete_session(db, cache, session_id, current_user.uid)
    except HTTPException:
        raise
    except Exception as e:
        raise _server_error(db, "delete chat session", e)

    return {
        "error": False,
        "message": "Chat session deleted successfully",
        "data": {"session": snapshot.model_dump(by_alias=True, mode="json")}
    }


# =============================================================================
# MESSAGES
# =============================================================================

@router.post("/sessions/{session_id}/messages")
async def send_message(
    session_id: str,
    payload: ChatMessageCreate,
    current_user: IdentityClaims = Depends(get_current_user),
    db: Session = Depends(get_db),
    gemini: GeminiService = Depends(get_gemini_service),
    cache: ChatHandleCache = Depends(get_chat_handle_cache)
):
    try:
        user_message, ai_message = await chat_pipeline.send_message(
            db, gemini, cache, session_id, current_user.uid, payload.message
        )
    except HTTPException:
        raise
    except Exception as e:
        raise _server_error(db, "send message", e)

    return {
        "error": False,
        "message": "Message sent successfully",
        "data": {
            "userMessage": ChatMessageResponse.model_validate(user_message).model_dump(by_alias=True, mode="json"),
            "aiMessage": ChatMessageResponse.model_validate(ai_message).model_dump(by_alias=True, mode="json"),
        }
    }
