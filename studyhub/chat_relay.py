import logging
import time
import uuid
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from .errors import AiServiceUnavailable
from .llm import ChatCompletionClient, CompletionError
from .models import ChatContext, ChatMessage, ChatRole

log = logging.getLogger("studyhub.chat")

HISTORY_WINDOW = 10

SYSTEM_PROMPT = """You are a helpful virtual assistant for a student dashboard application. You can help with:
- Task and assignment management
- Note-taking and organization
- Study planning and scheduling
- General productivity advice
- Academic support

Be concise, helpful, and encouraging. If asked about features outside your scope, politely redirect to the appropriate section of the dashboard."""

FALLBACK_REPLY = (
    "I apologize, but I'm experiencing technical difficulties right now. Please try again in a moment."
)


@dataclass
class RelayRequest:
    message: str
    session_id: Optional[str] = None
    context: ChatContext = ChatContext.GENERAL
    model: str = "gpt-3.5-turbo"
    temperature: float = 0.7
    max_tokens: int = 1000


def conversation_window(db: Session, user_id: str, session_id: str, size: int = HISTORY_WINDOW) -> list[dict]:
    """Last ``size`` live messages of a session, oldest first, with the system prompt in front."""
    recent = (
        db.query(ChatMessage)
        .filter(
            ChatMessage.user_id == user_id,
            ChatMessage.session_id == session_id,
            ChatMessage.is_deleted.is_(False),
        )
        .order_by(ChatMessage.created_at.desc())
        .limit(size)
        .all()
    )
    history = [{"role": m.role.value, "content": m.content} for m in reversed(recent)]
    return [{"role": ChatRole.SYSTEM.value, "content": SYSTEM_PROMPT}, *history]


def relay_message(db: Session, llm: ChatCompletionClient, user_id: str, req: RelayRequest) -> dict:
    session_id = req.session_id or str(uuid.uuid4())

    # the user's turn is stored before the upstream call
    db.add(ChatMessage(
        user_id=user_id,
        session_id=session_id,
        role=ChatRole.USER,
        content=req.message,
        context=req.context,
        model=req.model,
        temperature=req.temperature,
        max_tokens=req.max_tokens,
    ))
    db.commit()

    messages = conversation_window(db, user_id, session_id)
    started = time.monotonic()

    try:
        completion = llm.complete(messages, model=req.model, temperature=req.temperature, max_tokens=req.max_tokens)
    except CompletionError as e:
        elapsed_ms = int((time.monotonic() - started) * 1000)
        log.warning("Completion failed for session %s: %s", session_id, e)
        db.add(ChatMessage(
            user_id=user_id,
            session_id=session_id,
            role=ChatRole.ASSISTANT,
            content=FALLBACK_REPLY,
            context=req.context,
            model=req.model,
            response_time_ms=elapsed_ms,
        ))
        db.commit()
        raise AiServiceUnavailable(extra={"message": FALLBACK_REPLY, "sessionId": session_id}) from e

    elapsed_ms = int((time.monotonic() - started) * 1000)
    reply = ChatMessage(
        user_id=user_id,
        session_id=session_id,
        role=ChatRole.ASSISTANT,
        content=completion.content,
        context=req.context,
        model=req.model,
        prompt_tokens=completion.prompt_tokens,
        completion_tokens=completion.completion_tokens,
        total_tokens=completion.total_tokens,
        response_time_ms=elapsed_ms,
        temperature=req.temperature,
        max_tokens=req.max_tokens,
    )
    db.add(reply)
    db.commit()
    db.refresh(reply)

    return {
        "message": completion.content,
        "sessionId": session_id,
        "messageId": reply.id,
        "metadata": {
            "model": req.model,
            "tokens": {
                "prompt": completion.prompt_tokens,
                "completion": completion.completion_tokens,
                "total": completion.total_tokens,
            },
            "responseTime": elapsed_ms,
        },
    }
