"""
Main FastAPI application entry point.
"""
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from journal_engine.api.deps import build_executor
from journal_engine.api.endpoints import router as api_router
from journal_engine.core.config import settings
from journal_engine.core.errors import TaskEngineError
from journal_engine.core.logging import logger
from journal_engine.graph.continuation import ChainContinuation


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan events for FastAPI app.
    Initialize resources at startup and clean up at shutdown.
    """
    logger.info("Starting journal engine")
    if not getattr(app.state, "continuation", None):
        app.state.continuation = ChainContinuation(executor_factory=build_executor)
    mode = "remote trigger" if app.state.continuation.remote else "in-process"
    logger.info(f"Chain continuation mode: {mode}")

    yield

    # Let in-process chains finish their current task
    await app.state.continuation.drain()
    logger.info("Shutting down journal engine")


# Create FastAPI app
app = FastAPI(
    title="Journal Engine",
    description="Task-graph execution engine for a journaling assistant",
    version="0.1.0",
    lifespan=lifespan,
)

# Determine CORS origins
cors_origins = [settings.FRONTEND_URL]
if settings.APP_ENV == "development":
    # Add additional development origins
    cors_origins.extend([
        "http://localhost:3000",
        "http://localhost:5173",  # Vite default
        "http://127.0.0.1:5173",
    ])
elif settings.CORS_ORIGINS and settings.CORS_ORIGINS != ["*"]:
    cors_origins.extend(settings.CORS_ORIGINS)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "Accept", "X-Client-Info"],
    expose_headers=["Content-Length"],
    max_age=600,  # 10 minutes
)

# Include API router
app.include_router(api_router, prefix=settings.API_PREFIX)


# Exception handlers
@app.exception_handler(TaskEngineError)
async def task_engine_exception_handler(request: Request, exc: TaskEngineError):
    """Render domain errors with their status code."""
    logger.info(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.message}")
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message},
        headers=headers,
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler for unhandled errors."""
    logger.exception(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error. Please try again later."},
    )


# Root endpoint
@app.get("/")
async def root():
    """Root endpoint."""
    return {"message": "Welcome to the Journal Engine API", "status": "healthy"}


# Health check endpoint
@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}


def run():
    """Serve the app with uvicorn; reloads on code changes when DEBUG is set."""
    uvicorn.run(
        "journal_engine.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
    )


if __name__ == "__main__":
    run()
