"""
marketchat.api.routes.chat — Chat socket and moderation endpoints
===================================================================

``/ws/chat`` carries the real-time event protocol.  The REST endpoints are
fallbacks for moderation tools that don't hold a socket, plus operational
snapshots.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect, status
from pydantic import BaseModel, Field

from marketchat.api.auth import authenticate
from marketchat.api.deps import get_current_admin, get_current_user, get_relay
from marketchat.engine.access import check_access
from marketchat.engine.errors import AuthenticationFailure, ChannelNotFound, ValidationFailure
from marketchat.engine.events import ErrorNotice, ServerEvent
from marketchat.engine.records import ChannelInfo, Identity
from marketchat.engine.relay import ChatConnection, MessageRelay

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chat", tags=["chat"])
ws_router = APIRouter()

Relay = Annotated[MessageRelay, Depends(get_relay)]
CurrentUser = Annotated[Identity, Depends(get_current_user)]


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class MuteRequest(BaseModel):
    duration: int | None = Field(default=None, description="Minutes; -1 for permanent")


class BanRequest(BaseModel):
    reason: str = "Banned by analyst"


# ---------------------------------------------------------------------------
# WebSocket
# ---------------------------------------------------------------------------
@ws_router.websocket("/ws/chat")
async def chat_socket(websocket: WebSocket):
    relay: MessageRelay | None = getattr(websocket.app.state, "relay", None)
    if relay is None:
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR, reason="Chat relay not ready")
        return
    try:
        identity = authenticate(websocket)
    except AuthenticationFailure as exc:
        logger.info("Socket handshake rejected: %s", exc.message)
        await websocket.close(code=exc.close_code, reason=exc.message)
        return

    await websocket.accept()
    conn = await relay.connect(identity)
    writer = asyncio.create_task(_pump(websocket, conn))
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            try:
                name, data = _unwrap(_frame_text(message))
            except ValueError as exc:
                conn.send(ServerEvent.ERROR, ErrorNotice(event="unknown", message=str(exc)))
                continue
            await relay.handle(conn, name, data)
    finally:
        writer.cancel()
        await relay.disconnect(conn)


def _frame_text(message: dict[str, Any]) -> str:
    """Text of one inbound frame; binary frames must hold UTF-8 JSON."""
    if message.get("text") is not None:
        return message["text"]
    try:
        return (message.get("bytes") or b"").decode("utf-8")
    except UnicodeDecodeError:
        raise ValueError("Binary frame is not valid UTF-8") from None


def _unwrap(raw: str) -> tuple[str, Any]:
    try:
        message = json.loads(raw)
    except json.JSONDecodeError:
        raise ValueError("Frame is not valid JSON") from None
    if not isinstance(message, dict) or not isinstance(message.get("event"), str):
        raise ValueError("Frame must be an object with an 'event' name")
    return message["event"], message.get("data")


async def _pump(websocket: WebSocket, conn: ChatConnection) -> None:
    """Forward queued frames to the socket until the relay closes *conn*."""
    while True:
        message = await conn.next_frame()
        if message is None:
            break
        try:
            await websocket.send_json(message)
        except (WebSocketDisconnect, RuntimeError):
            logger.debug("Socket for %s went away mid-send", conn.user_id)
            return
    # The relay closed this connection: a newer session took over.
    try:
        await websocket.close(code=4000, reason="Session replaced")
    except (RuntimeError, OSError):
        logger.debug("Socket for %s already closed", conn.user_id)


# ---------------------------------------------------------------------------
# Moderation fallbacks
# ---------------------------------------------------------------------------
async def _owned_channel(relay: MessageRelay, channel_id: str, user: Identity) -> ChannelInfo:
    try:
        channel = await relay.store.get_channel(channel_id)
    except ChannelNotFound:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Channel not found")
    if channel.is_deleted:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Channel not found")
    if not channel.is_owner(user.user_id):
        raise HTTPException(
            status.HTTP_403_FORBIDDEN, "Only the channel owner can moderate this channel"
        )
    return channel


def _check_target(channel: ChannelInfo, target_user_id: str) -> None:
    if channel.is_owner(target_user_id):
        raise HTTPException(status.HTTP_422_UNPROCESSABLE_ENTITY, "You cannot moderate yourself")


@router.post("/channels/{channel_id}/users/{target_user_id}/mute")
async def mute_user(
    channel_id: str,
    target_user_id: str,
    body: MuteRequest,
    relay: Relay,
    user: CurrentUser,
):
    channel = await _owned_channel(relay, channel_id, user)
    _check_target(channel, target_user_id)
    duration = body.duration if body.duration is not None else relay.cfg.default_mute_minutes
    try:
        entry = await relay.mute_user_direct(
            channel.id, target_user_id, duration, actor_id=user.user_id
        )
    except ValidationFailure as exc:
        raise HTTPException(status.HTTP_422_UNPROCESSABLE_ENTITY, exc.message)
    return {
        "success": True,
        "channelId": channel.id,
        "targetUserId": target_user_id,
        "duration": duration,
        "mute_until": entry.until.isoformat() if entry.until else None,
    }


@router.delete("/channels/{channel_id}/users/{target_user_id}/mute")
async def unmute_user(channel_id: str, target_user_id: str, relay: Relay, user: CurrentUser):
    channel = await _owned_channel(relay, channel_id, user)
    if not await relay.unmute_user_direct(channel.id, target_user_id):
        raise HTTPException(status.HTTP_404_NOT_FOUND, "User is not muted in this channel")
    return {"success": True, "channelId": channel.id, "targetUserId": target_user_id}


@router.post("/channels/{channel_id}/users/{target_user_id}/ban")
async def ban_user(
    channel_id: str,
    target_user_id: str,
    body: BanRequest,
    relay: Relay,
    user: CurrentUser,
):
    channel = await _owned_channel(relay, channel_id, user)
    _check_target(channel, target_user_id)
    entry = await relay.ban_user_direct(
        channel.id, target_user_id, body.reason, actor_id=user.user_id
    )
    return {
        "success": True,
        "channelId": channel.id,
        "targetUserId": target_user_id,
        "reason": entry.reason,
    }


@router.delete("/channels/{channel_id}/users/{target_user_id}/ban")
async def unban_user(channel_id: str, target_user_id: str, relay: Relay, user: CurrentUser):
    channel = await _owned_channel(relay, channel_id, user)
    if not await relay.unban_user_direct(channel.id, target_user_id):
        raise HTTPException(status.HTTP_404_NOT_FOUND, "User is not banned from this channel")
    return {"success": True, "channelId": channel.id, "targetUserId": target_user_id}


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------
@router.get("/channels/{channel_id}/online")
async def online_users(channel_id: str, relay: Relay, user: CurrentUser):
    try:
        channel = await relay.store.get_channel(channel_id)
    except ChannelNotFound:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Channel not found")
    subscription = None
    if not channel.is_owner(user.user_id) and not channel.is_deleted:
        subscription = await relay.store.get_active_subscription(user.user_id, channel.analyst_id)
    decision = check_access(channel, user.user_id, user.role, subscription)
    if not decision.has_access:
        raise HTTPException(status.HTTP_403_FORBIDDEN, "You do not have access to this channel")
    users = relay.online_users_snapshot(channel.id)
    return {"channelId": channel.id, "users": users, "count": len(users)}


@router.get("/stats")
def chat_stats(
    relay: Relay,
    admin: Annotated[Identity, Depends(get_current_admin)],
):
    return relay.chat_stats()
