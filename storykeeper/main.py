import time
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from storykeeper.core.config import settings
from storykeeper.core.logger import Logger
from storykeeper.core.database import Database, db
from storykeeper.core.circuit_breaker import build_voice_breaker
from storykeeper.core.security import SecurityMiddleware, api_rate_limiter
from storykeeper.core.tasks import BackgroundTaskQueue
from storykeeper.providers.claude import ClaudeProvider
from storykeeper.providers.openai_speech import OpenAISpeechProvider
from storykeeper.services.broker import ChannelBroker, ConnectionRegistry
from storykeeper.services.collaborator import Collaborator
from storykeeper.services.memory.extractor import MemoryExtractor
from storykeeper.services.memory.orchestrator import ExtractionOrchestrator
from storykeeper.services.memory.storage import build_memory_store
from storykeeper.services.speech import SpeechService
from storykeeper.api import api_router

logger = Logger("Main")


def init_services(app: FastAPI, database: Database = db):
    """Create the process-scoped collaborators and hang them on app.state."""
    claude = ClaudeProvider()
    breaker = build_voice_breaker()
    broker = ChannelBroker(
        ConnectionRegistry(warn_threshold=settings.SSE_CONNECTION_WARN_THRESHOLD),
        soft_listener_cap=settings.BROKER_SOFT_LISTENER_CAP,
    )
    queue = BackgroundTaskQueue("extraction")
    store = build_memory_store(database)

    app.state.db = database
    app.state.broker = broker
    app.state.queue = queue
    app.state.store = store
    app.state.voice_breaker = breaker
    app.state.collaborator = Collaborator(claude)
    app.state.orchestrator = ExtractionOrchestrator(
        MemoryExtractor(claude), store, broker, queue, claim_capacity=settings.CLAIM_CACHE_SIZE
    )
    app.state.speech = SpeechService(OpenAISpeechProvider(), breaker)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("🚀 Starting StoryKeeper...")
    await db.connect()
    init_services(app, db)

    if not settings.CLAUDE_API_KEY:
        logger.warn("CLAUDE_API_KEY not set; chat and extraction will fail")
    if settings.voice_available:
        logger.info("✅ Voice features enabled")
    else:
        logger.info("Voice features disabled")

    yield

    # Shutdown
    logger.info("🛑 Shutting down...")
    app.state.broker.close_all()
    await app.state.queue.drain(timeout=settings.BACKGROUND_DRAIN_SECONDS)
    await db.disconnect()


app = FastAPI(lifespan=lifespan, title="StoryKeeper API", version="1.0.0")

# Security middleware (per-IP rate limiting on /api/)
app.add_middleware(SecurityMiddleware, rate_limiter=api_rate_limiter)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list or ["http://localhost:3000", "http://127.0.0.1:3000"],
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(api_router)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.method} {request.url.path}", exc)
    content = {"error": "Internal server error"}
    if settings.is_development:
        content["details"] = str(exc)
    return JSONResponse(status_code=500, content=content)


@app.get("/healthz")
async def healthz():
    return {"ok": True, "ts": int(time.time() * 1000)}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("storykeeper.main:app", host="0.0.0.0", port=settings.API_PORT)
