import logging
from typing import Annotated, Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field, StringConstraints
from sqlalchemy import desc, func, update
from sqlalchemy.orm import Session, selectinload

from ..auth_dep import get_current_user
from ..chat_relay import RelayRequest, relay_message
from ..db import get_db
from ..errors import NotFound, SubResourceNotFound, ValidationFailed
from ..llm import ChatCompletionClient, get_llm
from ..models import ChatContext, ChatMessage, ChatReaction, ReactionType, User
from ..query import PageParams, owned, page_params, paginate, substring_filter
from ..schemas import UtcDatetime
from ..settings import settings
from ..utils import to_iso, utcnow

log = logging.getLogger("studyhub.chat")

router = APIRouter(prefix="/api/chat", tags=["chat"])

MessageText = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=4000)]


class MessageIn(BaseModel):
    message: MessageText
    sessionId: Optional[UUID] = None
    context: ChatContext = ChatContext.GENERAL
    model: Literal["gpt-3.5-turbo", "gpt-4", "gpt-4-turbo-preview"] = settings.OPENAI_DEFAULT_MODEL
    temperature: float = Field(default=0.7, ge=0, le=2)
    maxTokens: int = Field(default=1000, ge=1, le=4000)

class EditIn(BaseModel):
    content: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=10000)]

class ReactionIn(BaseModel):
    reaction: ReactionType


def reaction_to_dto(r: ChatReaction) -> dict:
    return {"id": r.id, "type": r.type.value, "createdAt": to_iso(r.created_at)}

def message_to_dto(m: ChatMessage) -> dict:
    return {
        "id": m.id,
        "sessionId": m.session_id,
        "role": m.role.value,
        "content": m.content,
        "context": m.context.value,
        "metadata": {
            "model": m.model,
            "tokens": {"prompt": m.prompt_tokens, "completion": m.completion_tokens, "total": m.total_tokens},
            "responseTime": m.response_time_ms,
            "temperature": m.temperature,
            "maxTokens": m.max_tokens,
        },
        "reactions": [reaction_to_dto(r) for r in m.reactions],
        "isEdited": m.is_edited,
        "createdAt": to_iso(m.created_at),
    }

def _live(db: Session, user: User):
    return owned(db, ChatMessage, user.id).filter(ChatMessage.is_deleted.is_(False))

def _load(db: Session, message_id: str, user: User) -> ChatMessage:
    m = _live(db, user).filter(ChatMessage.id == message_id).first()
    if m is None:
        raise NotFound("Message not found", code="MESSAGE_NOT_FOUND")
    return m


@router.post("/message")
def send_message(
    payload: MessageIn,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    llm: ChatCompletionClient = Depends(get_llm),
):
    req = RelayRequest(
        message=payload.message,
        session_id=str(payload.sessionId) if payload.sessionId else None,
        context=payload.context,
        model=payload.model,
        temperature=payload.temperature,
        max_tokens=payload.maxTokens,
    )
    return relay_message(db, llm, user.id, req)

@router.get("/history/{session_id}")
def chat_history(
    session_id: str,
    params: PageParams = Depends(page_params(50, 100)),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    q = (
        _live(db, user)
        .filter(ChatMessage.session_id == session_id)
        .options(selectinload(ChatMessage.reactions))
        .order_by(ChatMessage.created_at.asc(), ChatMessage.id.asc())
    )
    page = paginate(q, params)
    return {
        "messages": [message_to_dto(m) for m in page.items],
        "pagination": page.pagination(),
        "sessionId": session_id,
    }

@router.get("/sessions")
def chat_sessions(
    params: PageParams = Depends(page_params(20, 50)),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    last_activity = func.max(ChatMessage.created_at).label("last_activity")
    grouped = (
        _live(db, user)
        .with_entities(ChatMessage.session_id, func.count(ChatMessage.id).label("message_count"), last_activity)
        .group_by(ChatMessage.session_id)
        .order_by(desc("last_activity"), ChatMessage.session_id)
    )
    page = paginate(grouped, params)

    sessions = []
    for session_id, message_count, last_at in page.items:
        last = (
            _live(db, user)
            .filter(ChatMessage.session_id == session_id)
            .order_by(ChatMessage.created_at.desc(), ChatMessage.id.desc())
            .first()
        )
        sessions.append({
            "sessionId": session_id,
            "lastMessage": {
                "content": last.content,
                "role": last.role.value,
                "createdAt": to_iso(last.created_at),
            },
            "messageCount": message_count,
            "lastActivity": to_iso(last_at),
        })
    return {"sessions": sessions, "pagination": page.pagination()}

@router.delete("/sessions/{session_id}")
def delete_session(session_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    result = db.execute(
        update(ChatMessage)
        .where(
            ChatMessage.user_id == user.id,
            ChatMessage.session_id == session_id,
            ChatMessage.is_deleted.is_(False),
        )
        .values(is_deleted=True, deleted_at=utcnow(), updated_at=utcnow())
    )
    if result.rowcount == 0:
        db.rollback()
        raise NotFound("Chat session not found", code="SESSION_NOT_FOUND")
    db.commit()
    log.info("Soft-deleted %d messages of session %s", result.rowcount, session_id)
    return {"message": "Chat session deleted successfully"}

@router.put("/messages/{message_id}")
def edit_message(message_id: str, payload: EditIn, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    m = _load(db, message_id, user)
    m.edit_history = [*(m.edit_history or []), {"content": m.content, "editedAt": to_iso(utcnow())}]
    m.content = payload.content
    m.is_edited = True
    db.commit()
    db.refresh(m)
    return {"message": "Message updated successfully", "chatMessage": message_to_dto(m)}

@router.post("/messages/{message_id}/reaction")
def add_reaction(message_id: str, payload: ReactionIn, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    m = _load(db, message_id, user)
    # one reaction per type; the newer one wins
    for r in [r for r in m.reactions if r.type == payload.reaction]:
        m.reactions.remove(r)
    m.reactions.append(ChatReaction(type=payload.reaction))
    db.commit()
    db.refresh(m)
    return {"message": "Reaction added successfully", "reactions": [reaction_to_dto(r) for r in m.reactions]}

@router.delete("/messages/{message_id}/reaction/{reaction_type}")
def remove_reaction(
    message_id: str,
    reaction_type: ReactionType,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    m = _load(db, message_id, user)
    matches = [r for r in m.reactions if r.type == reaction_type]
    if not matches:
        raise SubResourceNotFound("Reaction not found", code="REACTION_NOT_FOUND")
    for r in matches:
        m.reactions.remove(r)
    db.commit()
    db.refresh(m)
    return {"message": "Reaction removed successfully", "reactions": [reaction_to_dto(r) for r in m.reactions]}

@router.get("/search")
def search_messages(
    q: Optional[str] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=50),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    text = (q or "").strip()
    if len(text) < 2:
        raise ValidationFailed("Search query must be at least 2 characters long", code="INVALID_QUERY")

    items = (
        _live(db, user)
        .filter(substring_filter(text, ChatMessage.content))
        .order_by(ChatMessage.created_at.desc(), ChatMessage.id.desc())
        .limit(limit)
        .all()
    )
    return {
        "messages": [
            {
                "id": m.id,
                "content": m.content,
                "role": m.role.value,
                "sessionId": m.session_id,
                "context": m.context.value,
                "createdAt": to_iso(m.created_at),
            }
            for m in items
        ],
        "query": text,
        "total": len(items),
    }

@router.get("/stats")
def chat_stats(
    startDate: Optional[UtcDatetime] = Query(default=None),
    endDate: Optional[UtcDatetime] = Query(default=None),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    q = _live(db, user)
    if startDate is not None:
        q = q.filter(ChatMessage.created_at >= startDate)
    if endDate is not None:
        q = q.filter(ChatMessage.created_at <= endDate)

    total, tokens, avg_ms, sessions = q.with_entities(
        func.count(ChatMessage.id),
        func.coalesce(func.sum(ChatMessage.total_tokens), 0),
        func.avg(ChatMessage.response_time_ms),
        func.count(func.distinct(ChatMessage.session_id)),
    ).one()

    return {
        "stats": {
            "totalMessages": total,
            "totalTokens": int(tokens),
            "avgResponseTime": round(float(avg_ms), 2) if avg_ms is not None else 0,
            "sessionCount": sessions,
        },
        "period": {"startDate": to_iso(startDate), "endDate": to_iso(endDate)},
    }

@router.get("/health")
def chat_health(llm: ChatCompletionClient = Depends(get_llm)):
    return {
        "status": "ok",
        "service": "chat",
        "openaiConfigured": llm.configured,
        "timestamp": to_iso(utcnow()),
    }
