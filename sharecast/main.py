"""
FastAPI application entry point for the sharecast receiver.
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import logging

from sharecast.config import settings
from sharecast.api.v1 import session
from sharecast.media.receiver import StreamReceiver
from sharecast.services.session_controller import SessionController

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.debug else settings.log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    logger.info(f"Signaling server: {settings.signaling_url}")

    controller = SessionController()
    receiver = StreamReceiver(
        record_path=settings.record_path,
        frame_timeout=settings.receiver_frame_timeout,
    )
    app.state.controller = controller
    app.state.receiver = receiver
    app.state.receiver_subscription = controller.subscribe(receiver.on_notification)

    yield

    # Shutdown
    await app.state.controller.stop()
    app.state.receiver_subscription.unsubscribe()
    await receiver.close()
    logger.info("Shutting down application")


# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="WebRTC screen-share receiver",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(session.router, prefix="/api/v1/session", tags=["session"])


@app.get("/.well-known/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": settings.app_name,
        "version": settings.app_version,
    }


@app.get("/")
async def root():
    """Root endpoint."""
    receiver: StreamReceiver = app.state.receiver
    return {
        "service": settings.app_name,
        "version": settings.app_version,
        "docs": "/docs",
        "health": "/.well-known/health",
        "frames_received": receiver.frame_count,
    }

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "sharecast.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )
