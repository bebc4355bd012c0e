from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from fastapi import APIRouter, Depends, File, HTTPException, Query, Request, UploadFile
from fastapi.responses import JSONResponse, Response, StreamingResponse
from pydantic import BaseModel
from storykeeper.api.auth import verify_api_key, verify_stream_token
from storykeeper.core.config import settings
from storykeeper.core.errors import (
    CapabilityUnavailableError,
    DuplicateMessageError,
    InvalidRequestError,
    UpstreamRateLimitError,
)
from storykeeper.core.logger import Logger
from storykeeper.core.security import get_client_ip, limit_speech_requests
from storykeeper.services.collaborator import split_tokens
from storykeeper.services.memory.models import ExtractionRequest, mint_message_id, topic_key
from storykeeper.services.speech import audio_extension
from storykeeper.services.stream_session import SSE_HEADERS, StreamSession, sse_frame

logger = Logger("API")

# /chat and /events sit at the root; everything else under /api
stream_router = APIRouter(tags=["Stream"])
router = APIRouter(prefix="/api", tags=["API"])

VOICE_UNAVAILABLE = "Voice features temporarily unavailable"


# Request Models
class MemoryKeeperRequest(BaseModel):
    message: str
    model: Optional[str] = None
    conversationId: str = "default"
    messageId: Optional[str] = None


class CollaboratorRequest(BaseModel):
    message: Any = None
    conversationHistory: List[Dict[str, Any]] = []
    model: Optional[str] = None


class TTSRequest(BaseModel):
    text: str
    voice: str = "nova"
    speed: float = 0.9


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def sanitize_model(requested: Any, fallback: Optional[str] = None) -> str:
    """Return `requested` if whitelisted, else the fallback model."""
    fallback = fallback or settings.COLLABORATOR_MODEL
    if not requested or not isinstance(requested, str):
        return fallback
    return requested if requested in settings.allowed_models_list else fallback


def validate_chat_text(text: Any) -> str:
    if not text or not isinstance(text, str):
        raise InvalidRequestError("bad_request", "text is required")
    if len(text) > settings.MAX_MESSAGE_LENGTH:
        raise InvalidRequestError(
            "message_too_long",
            f"Message too long. Maximum {settings.MAX_MESSAGE_LENGTH} characters allowed."
        )
    return text


def actor_metadata(request: Request) -> Dict[str, Any]:
    return {
        "ip_address": get_client_ip(request),
        "user_agent": request.headers.get("user-agent"),
    }


def single_frame_response(event: str, data: Dict[str, Any]) -> StreamingResponse:
    async def one():
        yield sse_frame(event, data)
    return StreamingResponse(one(), media_type="text/event-stream", headers=SSE_HEADERS)


# === Stream: collaborator reply + background memory extraction ===
@stream_router.post("/chat")
async def chat(request: Request, user_id: str = Depends(verify_api_key)):
    try:
        body = await request.json()
    except ValueError:
        body = None
    if not isinstance(body, dict):
        body = {}

    try:
        text = validate_chat_text(body.get("text"))
    except InvalidRequestError as e:
        return single_frame_response("error", {"code": e.code, "message": e.message})

    conversation_id = str(body.get("conversationId") or "default")
    message_id = str(body.get("messageId") or mint_message_id())
    primer = body.get("primer") if isinstance(body.get("primer"), str) else None

    state = request.app.state
    extraction = ExtractionRequest(
        conversation_id=conversation_id,
        message_id=message_id,
        text=text,
        model=settings.memory_model,
        timeout=settings.EXTRACTION_TIMEOUT_SECONDS,
        max_tokens=settings.EXTRACTION_MAX_TOKENS,
        user_id=user_id,
        actor=actor_metadata(request),
    )
    try:
        state.orchestrator.submit(extraction)
    except DuplicateMessageError as e:
        logger.warn(str(e))
        return single_frame_response(
            "error", {"code": "duplicate_message", "message": "messageId was already used"}
        )

    async def reply_stream():
        try:
            reply = await state.collaborator.reply(text, primer)
            for token in split_tokens(reply):
                yield sse_frame("token", {"text": token})
            yield sse_frame("done", {"messageId": message_id})
        except Exception as e:
            logger.error(f"Collaborator failed for {message_id}", e)
            yield sse_frame("error", {
                "code": "upstream_error",
                "message": str(e) if settings.is_development else "failed",
            })

    return StreamingResponse(reply_stream(), media_type="text/event-stream", headers=SSE_HEADERS)


@stream_router.get("/events")
async def events(
    request: Request,
    conversationId: str = Query("default"),
    user_id: str = Depends(verify_stream_token),
):
    session = StreamSession(
        request.app.state.broker,
        topic_key(user_id, conversationId),
        user_id,
        heartbeat_interval=settings.SSE_HEARTBEAT_SECONDS,
        is_disconnected=request.is_disconnected,
    )
    return StreamingResponse(session.events(), media_type="text/event-stream", headers=SSE_HEADERS)


# === Memory Keeper (synchronous extraction) ===
@router.post("/memory-keeper")
async def memory_keeper(body: MemoryKeeperRequest, request: Request, user_id: str = Depends(verify_api_key)):
    try:
        validate_chat_text(body.message)
    except InvalidRequestError as e:
        raise HTTPException(status_code=400, detail=e.message)

    extraction = ExtractionRequest(
        conversation_id=body.conversationId,
        message_id=body.messageId or mint_message_id(),
        text=body.message,
        model=sanitize_model(body.model, settings.memory_model),
        timeout=settings.EXTRACTION_TIMEOUT_SECONDS,
        max_tokens=settings.EXTRACTION_MAX_TOKENS,
        user_id=user_id,
        actor=actor_metadata(request),
    )
    try:
        result = await request.app.state.orchestrator.run(extraction)
    except DuplicateMessageError:
        raise HTTPException(status_code=409, detail="messageId was already used")

    return {
        "memories": result.payload(),
        "id": result.id,
        "messageId": result.message_id,
        "agent": "memory-keeper",
        "timestamp": now_iso(),
    }


# === Collaborator (non-streaming reply) ===
@router.post("/collaborator")
async def collaborator(body: CollaboratorRequest, request: Request, user_id: str = Depends(verify_api_key)):
    try:
        message = validate_chat_text(body.message)
    except InvalidRequestError as e:
        raise HTTPException(status_code=400, detail=e.message)

    try:
        reply = await request.app.state.collaborator.reply(
            message,
            history=body.conversationHistory,
            model=sanitize_model(body.model, settings.COLLABORATOR_MODEL),
        )
    except Exception as e:
        logger.error("Collaborator reply failed", e)
        return JSONResponse(status_code=500, content={
            "error": "Failed to generate collaborator response",
            "details": str(e) if settings.is_development else None,
        })

    return {
        "response": reply,
        "agent": "collaborator",
        "timestamp": now_iso(),
    }


# === Memory history ===
@router.get("/memories")
async def list_memories(
    request: Request,
    conversationId: str = Query("default"),
    user_id: str = Depends(verify_api_key),
):
    records = await request.app.state.store.list(conversationId, user_id)
    return {
        "conversationId": conversationId,
        "count": len(records),
        "memories": [r.to_event() for r in records],
    }


@router.get("/memories/{memory_id}")
async def get_memory(
    memory_id: str,
    request: Request,
    conversationId: str = Query("default"),
    user_id: str = Depends(verify_api_key),
):
    record = await request.app.state.store.get(conversationId, memory_id, user_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Memory not found")
    return record.to_event()


@router.delete("/memories")
async def clear_memories(
    request: Request,
    conversationId: Optional[str] = Query(None),
    user_id: str = Depends(verify_api_key),
):
    if not settings.memory_delete_enabled:
        raise HTTPException(status_code=403, detail="Memory deletion is disabled")
    deleted = await request.app.state.store.clear(user_id, conversationId)
    logger.info(f"🗑️ Cleared {deleted} memories for user={user_id} conversation={conversationId or '*'}")
    return {"deleted": deleted, "conversationId": conversationId}


# === Voice ===
def voice_unavailable(message: str) -> JSONResponse:
    return JSONResponse(status_code=503, content={"error": VOICE_UNAVAILABLE, "message": message})


@router.post("/tts", dependencies=[Depends(limit_speech_requests)])
async def text_to_speech(body: TTSRequest, request: Request, user_id: str = Depends(verify_api_key)):
    if not body.text.strip():
        raise HTTPException(status_code=400, detail="Text is required")

    try:
        audio = await request.app.state.speech.synthesize(body.text, body.voice, body.speed)
    except CapabilityUnavailableError as e:
        return voice_unavailable(f"Voice is {e.reason}. Please continue with text.")
    except UpstreamRateLimitError:
        return voice_unavailable("Speech quota exceeded. Please try again later.")
    except Exception as e:
        logger.error("TTS failed", e)
        return JSONResponse(status_code=500, content={
            "error": "Failed to generate speech",
            "details": str(e) if settings.is_development else None,
        })

    return Response(content=audio, media_type="audio/mpeg", headers={"Cache-Control": "no-cache"})


@router.post("/transcribe", dependencies=[Depends(limit_speech_requests)])
async def transcribe(request: Request, audio: UploadFile = File(...), user_id: str = Depends(verify_api_key)):
    ext = audio_extension(audio.content_type, audio.filename)
    if not ext:
        raise HTTPException(status_code=400, detail="Unsupported or unknown audio format")
    data = await audio.read()
    if not data:
        raise HTTPException(status_code=400, detail="No audio file provided")

    try:
        transcript = await request.app.state.speech.transcribe(data, f"upload.{ext}", audio.content_type)
    except CapabilityUnavailableError as e:
        return voice_unavailable(f"Voice is {e.reason}. Please continue with text.")
    except UpstreamRateLimitError:
        return voice_unavailable("Speech quota exceeded. Please try again later.")
    except Exception as e:
        logger.error("Transcription failed", e)
        return JSONResponse(status_code=500, content={
            "error": "Failed to transcribe audio",
            "details": str(e) if settings.is_development else None,
        })

    if not transcript:
        return {"transcript": "", "warning": "No speech detected in audio"}
    return {
        "transcript": transcript,
        # Rough estimate assuming 16kHz 16-bit mono
        "duration": len(data) / (16000 * 2),
        "timestamp": now_iso(),
    }


# === Health ===
@router.get("/health")
async def api_health(request: Request):
    state = request.app.state
    return {
        "status": "healthy",
        "timestamp": now_iso(),
        "claudeConfigured": bool(settings.CLAUDE_API_KEY),
        "openaiConfigured": bool(settings.OPENAI_API_KEY),
        "voice": state.voice_breaker.snapshot(),
        "broker": state.broker.stats(),
        "background": {"pending": state.queue.pending, **state.queue.stats},
        "database": {"configured": state.db.configured, "ok": await state.db.ping()},
    }
