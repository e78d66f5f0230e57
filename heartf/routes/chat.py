from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from heartf.database import get_db
from heartf.dependencies.auth import require_auth
from heartf.services.auth import Principal
from heartf.services.chat import create_thread, list_messages, send_message

router = APIRouter(prefix="/api/chat", tags=["chat"])


class ThreadIn(BaseModel):
    title: str | None = None


class SendIn(BaseModel):
    threadId: int
    message: str = ""
    context: dict[str, Any] | None = None


@router.post("/threads")
def chat_thread_create(
    payload: ThreadIn,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_auth),
):
    thread = create_thread(db, principal, payload.title)
    db.commit()
    return {"ok": True, "threadId": thread.id, "title": thread.title}


@router.get("/threads/{thread_id}/messages")
def chat_messages(
    thread_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_auth),
):
    return {"ok": True, "messages": list_messages(db, principal, thread_id)}


@router.post("/send")
def chat_send(
    payload: SendIn,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_auth),
):
    reply = send_message(
        db,
        principal,
        thread_id=payload.threadId,
        message=payload.message,
        context=payload.context,
    )
    db.commit()
    return {"ok": True, "reply": reply}
