from __future__ import annotations

import logging
from typing import Any

from openai import OpenAI
from sqlalchemy.orm import Session

from heartf.core.config import settings
from heartf.models.chat import ChatMessage, ChatThread
from heartf.services.auth import Principal
from heartf.utils.clock import iso, utcnow

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 24
MESSAGE_LIST_LIMIT = 200
PLACEHOLDER_MODEL = "placeholder"


class ChatError(Exception):
    status_code = 400

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


def create_thread(db: Session, principal: Principal, title: str | None = None) -> ChatThread:
    thread = ChatThread(
        org_id=principal.org_id,
        user_id=principal.user_id,
        title=(title or "").strip() or "Support",
    )
    db.add(thread)
    db.flush()
    return thread


def owned_thread(db: Session, principal: Principal, thread_id: int) -> ChatThread:
    thread = (
        db.query(ChatThread)
        .filter(
            ChatThread.id == thread_id,
            ChatThread.org_id == principal.org_id,
            ChatThread.user_id == principal.user_id,
        )
        .first()
    )
    if thread is None:
        raise ChatError("Forbidden", status_code=403)
    return thread


def list_messages(db: Session, principal: Principal, thread_id: int) -> list[dict[str, Any]]:
    owned_thread(db, principal, thread_id)
    rows = (
        db.query(ChatMessage)
        .filter(ChatMessage.thread_id == thread_id, ChatMessage.org_id == principal.org_id)
        .order_by(ChatMessage.created_at.desc(), ChatMessage.id.desc())
        .limit(MESSAGE_LIST_LIMIT)
        .all()
    )
    rows.reverse()
    return [
        {
            "id": row.id,
            "role": row.role,
            "content": row.content,
            "meta": row.meta,
            "created_at": iso(row.created_at),
        }
        for row in rows
    ]


def build_system_prompt(principal: Principal, context: dict[str, Any] | None) -> str:
    ctx = context or {}
    selected = ctx.get("selectedEntity")
    selected_text = f"{selected.get('type')}#{selected.get('id')}" if isinstance(selected, dict) else "none"
    return "\n".join(
        [
            "You are an in-app support agent for a logistics and CRM system.",
            "Be concise and practical. Ask only for missing details needed to resolve the issue.",
            "When the user is booking: collect pickup, delivery, date, cargo, refrigeration, customer, price.",
            "When troubleshooting: ask what they clicked, what they expected, what happened, any error text.",
            "",
            f"User: {principal.first_name} {principal.last_name} ({principal.email})",
            f"Role: {principal.role}",
            f"Current route: {ctx.get('route') or 'unknown'}",
            f"Module: {ctx.get('module') or 'unknown'}",
            f"Selected: {selected_text}",
        ]
    )


def placeholder_reply(messages: list[dict[str, str]]) -> str:
    last_user = next((m["content"] for m in reversed(messages) if m["role"] == "user"), "")
    return (
        "Got it. Here's what I understand:\n\n"
        f"{last_user}\n\n"
        "Tell me what screen you are on and what you tried, and I'll guide you step by step."
    )


def call_model(system: str, messages: list[dict[str, str]]) -> tuple[str, str]:
    """Returns (reply, model name). Falls back to the placeholder when OpenAI is not configured or fails."""
    api_key = (settings.OPENAI_API_KEY or "").strip()
    if not api_key:
        return placeholder_reply(messages), PLACEHOLDER_MODEL

    client = OpenAI(api_key=api_key)
    try:
        response = client.chat.completions.create(
            model=settings.OPENAI_MODEL,
            temperature=0.3,
            messages=[{"role": "system", "content": system}, *messages],
        )
        reply = (response.choices[0].message.content or "").strip()
    except Exception as exc:
        logger.warning("support chat: model call failed: %s", exc)
        return placeholder_reply(messages), PLACEHOLDER_MODEL

    if not reply:
        return placeholder_reply(messages), PLACEHOLDER_MODEL
    return reply, settings.OPENAI_MODEL


def send_message(
    db: Session,
    principal: Principal,
    *,
    thread_id: int,
    message: str,
    context: dict[str, Any] | None = None,
) -> str:
    cleaned = (message or "").strip()
    if not cleaned:
        raise ChatError("Message is empty")

    thread = owned_thread(db, principal, thread_id)

    db.add(
        ChatMessage(
            org_id=principal.org_id,
            thread_id=thread.id,
            user_id=principal.user_id,
            role="user",
            content=cleaned,
            meta={"context": context or None},
        )
    )
    db.flush()

    recent = (
        db.query(ChatMessage)
        .filter(ChatMessage.org_id == principal.org_id, ChatMessage.thread_id == thread.id)
        .order_by(ChatMessage.created_at.desc(), ChatMessage.id.desc())
        .limit(HISTORY_LIMIT)
        .all()
    )
    history = [
        {"role": row.role, "content": row.content}
        for row in reversed(recent)
        if row.role in ("user", "assistant")
    ]

    reply, model_name = call_model(build_system_prompt(principal, context), history)

    db.add(
        ChatMessage(
            org_id=principal.org_id,
            thread_id=thread.id,
            user_id=None,
            role="assistant",
            content=reply,
            meta={"model": model_name},
        )
    )
    thread.updated_at = utcnow()
    return reply
