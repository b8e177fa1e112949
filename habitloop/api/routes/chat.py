"""
habitloop.api.routes.chat — Challenge chat (REST + live WebSocket)
===================================================================

The WebSocket holds one chat subscription for as long as the socket is
open.  The first frame is the history; every later frame is a live
message.  Text frames sent by the client are posted as messages.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect, status
from pydantic import BaseModel, Field

from habitloop.api.deps import decode_user_token, get_coordinator, get_current_user
from habitloop.errors import DomainError
from habitloop.services.participation import ChatSession, ParticipationCoordinator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/challenges/{challenge_id}", tags=["chat"])


class MessageCreate(BaseModel):
    message: str = Field(max_length=2000)


@router.get("/messages")
async def list_messages(
    challenge_id: int,
    user_id: str = Depends(get_current_user),
    coordinator: ParticipationCoordinator = Depends(get_coordinator),
):
    """Full chat history of a challenge, oldest first (members only)."""
    events = await coordinator.chat_history(user_id, challenge_id)
    return {"messages": [e.to_dict() for e in events]}


@router.post("/messages", status_code=status.HTTP_201_CREATED)
async def post_message(
    challenge_id: int,
    body: MessageCreate,
    user_id: str = Depends(get_current_user),
    coordinator: ParticipationCoordinator = Depends(get_coordinator),
):
    event = await coordinator.post_message(user_id, challenge_id, body.message)
    return event.to_dict()


async def _forward_live(websocket: WebSocket, chat: ChatSession) -> None:
    async for event in chat:
        await websocket.send_json({"type": "message", "message": event.to_dict()})


async def _receive_posts(
    websocket: WebSocket,
    coordinator: ParticipationCoordinator,
    user_id: str,
    challenge_id: int,
) -> None:
    while True:
        text = await websocket.receive_text()
        try:
            await coordinator.post_message(user_id, challenge_id, text)
        except DomainError as exc:
            await websocket.send_json({"type": "error", "code": exc.code, "detail": str(exc)})


@router.websocket("/chat")
async def chat_socket(
    websocket: WebSocket,
    challenge_id: int,
    token: str = "",
    coordinator: ParticipationCoordinator = Depends(get_coordinator),
):
    """Live chat for one challenge.  Authenticate with ``?token=<jwt>``."""
    try:
        user_id = decode_user_token(token)
    except HTTPException:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    try:
        async with coordinator.open_chat(user_id, challenge_id) as chat:
            await websocket.accept()
            await websocket.send_json({
                "type": "history",
                "messages": [e.to_dict() for e in chat.history],
            })

            tasks = [
                asyncio.create_task(_forward_live(websocket, chat)),
                asyncio.create_task(
                    _receive_posts(websocket, coordinator, user_id, challenge_id)
                ),
            ]
            done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
            for task in pending:
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
            for task in done:
                exc = task.exception()
                if exc is not None and not isinstance(exc, WebSocketDisconnect):
                    raise exc
    except DomainError as exc:
        logger.info("Chat socket refused for %s on %d: %s", user_id, challenge_id, exc.code)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=exc.code)
