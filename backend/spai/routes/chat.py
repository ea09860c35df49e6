"""
Chat endpoints.

GET  /api/chat/ask?prompt=
GET  /api/chat/ask/stream?prompt=          (async gateway, 408 on timeout)
GET  /api/chat/options?prompt=&model=
POST /api/chat/save
GET  /api/chat/history?userId=&sessionId=
GET  /api/chat/session/{session_id}?userId=
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from spai.core.logging import bind_request_context, get_logger
from spai.routes.responses import ok_response, orchestration_response
from spai.services.ai import domains
from spai.services.ai.orchestration import Orchestrator, get_orchestrator
from spai.services.history import HistoryStore, get_history_store
from spai.services.history.models import SaveChatRequest

logger = get_logger(__name__)

router = APIRouter()


@router.get("/ask")
def ask(
    request: Request,
    prompt: Optional[str] = Query(None, description="User prompt"),
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    """Synchronous chat completion (cached per prompt)."""
    return orchestration_response(request, orchestrator.chat(prompt))


@router.get("/ask/stream")
async def ask_stream(
    request: Request,
    prompt: Optional[str] = Query(None, description="User prompt"),
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    """Chat completion on the async gateway, bounded by ASYNC_TIMEOUT_SECONDS."""
    deferred = orchestrator.chat_async(prompt)
    result = await orchestrator.resolve(domains.CHAT, deferred)
    return orchestration_response(request, result)


@router.get("/options")
def ask_with_options(
    request: Request,
    prompt: Optional[str] = Query(None, description="User prompt"),
    model: Optional[str] = Query(None, description="Model name (defaults to LLM_MODEL)"),
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    """Chat completion with explicit model options."""
    return orchestration_response(request, orchestrator.chat_options(prompt, model))


@router.post("/save")
def save_chat(
    request: Request,
    body: SaveChatRequest,
    orchestrator: Orchestrator = Depends(get_orchestrator),
    store: HistoryStore = Depends(get_history_store),
):
    """Save a chat exchange; generates the AI response when none is given."""
    if body.user_id:
        bind_request_context(user_id=body.user_id)

    ai_response = body.ai_response
    if not ai_response:
        result = orchestrator.chat(body.prompt)
        if not result.success_flag:
            logger.warning("chat_save_generation_failed", outcome=result.outcome.value)
            return orchestration_response(request, result)
        ai_response = result.data

    message = store.save_chat(body.user_id, body.prompt, ai_response, body.session_id)
    return ok_response(request, message.to_payload(), message="Chat saved successfully")


@router.get("/history")
def chat_history(
    request: Request,
    user_id: Optional[str] = Query(None, alias="userId"),
    session_id: Optional[str] = Query(None, alias="sessionId"),
    store: HistoryStore = Depends(get_history_store),
):
    messages = store.list_chats(user_id, session_id)
    return ok_response(request, [m.to_payload() for m in messages], message="History retrieved")


@router.get("/session/{session_id}")
def chat_session(
    request: Request,
    session_id: str,
    user_id: Optional[str] = Query(None, alias="userId"),
    store: HistoryStore = Depends(get_history_store),
):
    messages = store.get_session(session_id, user_id)
    return ok_response(request, [m.to_payload() for m in messages], message="Session retrieved")
