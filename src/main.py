"""
Helpdesk Copilot - Main Application
=====================================

Conversational IT support triage service.

Modules:
- Triage: two-phase (COLLECT_INFO -> DIAGNOSE) assistant conversations

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Services and DTOs
- Domain: Entities, phase policy, prompts, normalization
- Infrastructure: Database, LLM, knowledge base
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

# Configuration
from src.config import settings

# Infrastructure
from src.infrastructure.database import init_database, close_database, create_tables

# Module Routers
from src.triage.interfaces import configure_triage, triage_router

# Logging
from src.shared.infrastructure.logging import setup_logging, get_logger

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Initialize database (database conversation store only)
    3. Build LLM client, knowledge base and conversation store
    4. Start knowledge base file watcher

    SHUTDOWN:
    1. Stop knowledge base watcher
    2. Close database connections
    """
    # === STARTUP ===
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting Helpdesk Copilot", extra={
        "version": settings.app_version,
        "environment": settings.environment,
        "conversation_store": settings.conversation_store,
        "llm_provider": settings.llm_provider
    })

    if settings.conversation_store == "database":
        logger.info("Initializing database")
        init_database()

        # Create tables (for development - use Alembic in production)
        logger.info("Creating database tables")
        try:
            await create_tables()
        except Exception as e:
            logger.warning(f"Database not available - running in degraded mode: {e}")

    logger.info("Initializing triage services")
    configure_triage(app, settings)
    app.state.knowledge_base.start_watching()

    logger.info("Helpdesk Copilot started successfully")

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Shutting down Helpdesk Copilot")

    app.state.knowledge_base.stop_watching()

    if settings.conversation_store == "database":
        await close_database()

    logger.info("Helpdesk Copilot shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="Helpdesk Copilot API",
    description="""
    ## Conversational IT Support Triage

    The assistant works in two phases:

    - **COLLECT_INFO**: asks up to 2 short questions about device, operating system and symptoms
    - **DIAGNOSE**: proposes up to 3 troubleshooting steps once enough is known

    Every reply has the same shape: `phase`, `message`, `questions` or `steps`, and `next_action`.

    ---

    ### 🤖 Triage Module

    **Endpoints:**
    - `POST /triage/copilot/chat` - Global copilot turn (knowledge base enriched)
    - `POST /triage/tickets/{ticket_id}/chat` - Ticket-scoped turn
    - `PUT /triage/tickets/{ticket_id}/context` - Register ticket fields
    - `GET /triage/tickets/{ticket_id}/conversation` - Ticket conversation
    - `POST /triage/conversations` - Start a conversation
    - `GET /triage/conversations` - List conversations
    - `GET|PATCH|DELETE /triage/conversations/{id}` - Manage a conversation
    - `POST /triage/conversations/{id}/messages` - Append a message

    ---
    """,
    version=settings.app_version,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# === CORS Middleware ===
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# === Custom Middleware (from shared) ===
from src.shared.api.middleware import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    register_exception_handlers
)

# Added last so it runs first and logging sees the correlation ID
app.add_middleware(LoggingMiddleware)
app.add_middleware(CorrelationIDMiddleware)
register_exception_handlers(app)

# === Include Module Routers ===
app.include_router(triage_router)

# === Health Check Endpoint ===

@app.get("/health", tags=["Health"], responses={
    200: {
        "description": "Service is healthy",
        "content": {
            "application/json": {
                "example": {
                    "status": "healthy",
                    "version": "1.0.0",
                    "environment": "development",
                    "checks": {
                        "conversation_store": "memory",
                        "llm_client": "available",
                        "knowledge_base": "loaded (3 documents)"
                    }
                }
            }
        }
    }
})
async def health_check(request: Request):
    """
    Health check endpoint for load balancers and orchestrators.

    Returns service health status including:
    - Conversation store mode
    - LLM client availability
    - Knowledge base status
    """
    state = request.app.state
    llm_client = getattr(state, "llm_client", None)
    knowledge_base = getattr(state, "knowledge_base", None)

    checks = {
        "conversation_store": settings.conversation_store,
        "llm_client": "available" if llm_client else "not_configured",
        "knowledge_base": (
            f"loaded ({len(knowledge_base.documents)} documents)" if knowledge_base else "not_loaded"
        )
    }

    return {
        "status": "healthy",
        "version": settings.app_version,
        "environment": settings.environment,
        "checks": checks
    }


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint with API information."""
    return {
        "service": settings.app_name,
        "version": settings.app_version,
        "architecture": "Clean Architecture / Modular Monolith",
        "docs": "/docs",
        "health": "/health",
        "modules": {
            "triage": {
                "prefix": "/triage",
                "endpoints": [
                    "POST /triage/copilot/chat - Copilot chat turn",
                    "POST /triage/tickets/{ticket_id}/chat - Ticket chat turn",
                    "GET /triage/conversations - List conversations",
                    "GET /triage/conversations/{id} - Get conversation"
                ]
            }
        }
    }


# === Development Entry Point ===

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "src.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level=settings.log_level.lower()
    )
