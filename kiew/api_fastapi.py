# api_fastapi.py - HTTP surface for feeding chat messages to the bot
import asyncio
import logging
from typing import Any, Optional

from fastapi import FastAPI, Request, Depends, HTTPException

from kiew import __version__
from kiew.errors import StorageError

logger = logging.getLogger(__name__)

app = FastAPI(
    title="kiew",
    version=__version__,
    docs_url=None,
    redoc_url=None,
    openapi_url=None
)

# =============================================================================
# SYSTEM INSTANCE (dependency injection)
# =============================================================================

_system: Optional[Any] = None


def set_system(system):
    """Set the KiewSystem instance for route handlers."""
    global _system
    _system = system
    logger.info("System instance registered with FastAPI")


def get_system():
    """Dependency to get system instance."""
    if _system is None:
        raise HTTPException(status_code=503, detail="System not initialized")
    return _system


# =============================================================================
# ROUTES
# =============================================================================

@app.get("/api/health")
async def health_check():
    """Health check endpoint. Reports whether the LLM backend answers once the system is up."""
    result = {"status": "ok", "version": __version__}
    if _system is not None:
        result["llm"] = bool(await asyncio.to_thread(_system.provider.health_check))
    return result


@app.post("/api/chats/{chat_id}/messages")
async def post_message(chat_id: int, request: Request, system=Depends(get_system)):
    """
    Deliver one chat message. Addressed messages get a reply, the rest are
    buffered and answered with {"buffered": true}.
    """
    try:
        data = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Body must be JSON")
    if not isinstance(data, dict) or not isinstance(data.get('text'), str) or not data['text'].strip():
        raise HTTPException(status_code=400, detail="No text provided")

    user_id = data.get('user_id', 0)
    if isinstance(user_id, bool) or not isinstance(user_id, int):
        raise HTTPException(status_code=400, detail="user_id must be an integer")

    reply = await asyncio.to_thread(
        system.process_message,
        chat_id,
        user_id,
        str(data.get('user_name') or 'user'),
        data['text'],
        bool(data.get('private', False)),
        bool(data.get('reply_to_bot', False)),
    )
    if reply is None:
        return {"buffered": True, "response": None}
    return {"buffered": False, "response": reply}


@app.get("/api/chats/{chat_id}/history")
async def get_history(chat_id: int, system=Depends(get_system)):
    """Messages buffered since the bot last answered in this chat."""
    entries = system.history.entries(chat_id)
    return {
        "chat_id": chat_id,
        "count": len(entries),
        "messages": [e.to_dict() for e in entries],
    }


@app.get("/api/chats/{chat_id}/data")
async def get_chat_data(chat_id: int, system=Depends(get_system)):
    """Stored character data for a chat, in its persisted shape."""
    try:
        data = await asyncio.to_thread(system.chat_data.snapshot, chat_id)
    except StorageError as e:
        logger.error(f"Chat data for {chat_id} unreadable: {e}")
        raise HTTPException(status_code=500, detail=str(e))
    return {"chat_id": chat_id, "data": data}


@app.delete("/api/chats/{chat_id}/session")
async def reset_session(chat_id: int, system=Depends(get_system)):
    """Forget the model-side conversation; stored data and buffered history stay."""
    discarded = await asyncio.to_thread(system.reset_chat, chat_id)
    return {"chat_id": chat_id, "reset": discarded}
