"""
Session control API endpoints.
"""
import logging

from fastapi import APIRouter, HTTPException, Request, WebSocket, status

from sharecast.schemas import SessionStatusResponse
from sharecast.services.session_controller import SessionController
from sharecast.utils.websocket_utils import NotificationSocketHandler

logger = logging.getLogger(__name__)

router = APIRouter()


def get_controller(request: Request) -> SessionController:
    return request.app.state.controller


def build_status(controller: SessionController) -> SessionStatusResponse:
    session = controller.session
    stream = controller.current_stream
    return SessionStatusResponse(
        state=controller.state,
        session_id=session.session_id if session else None,
        stream_available=stream is not None,
        stream_id=stream.stream_id if stream else None,
        track_kinds=stream.track_kinds if stream else [],
        close_reason=session.close_reason if session else None,
        created_at=session.created_at if session else None,
        closed_at=session.closed_at if session else None,
    )


@router.post("/start", response_model=SessionStatusResponse)
async def start_session(request: Request) -> SessionStatusResponse:
    """
    Start receiving the shared screen.

    Returns immediately; negotiation continues in the background. A no-op
    while a session is already active.
    """
    controller = get_controller(request)
    try:
        await controller.start()
        return build_status(controller)
    except Exception as e:
        logger.error(f"Error starting session: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to start session"
        )


@router.post("/stop", response_model=SessionStatusResponse)
async def stop_session(request: Request) -> SessionStatusResponse:
    """Stop the current session. Always safe to call."""
    controller = get_controller(request)
    try:
        await controller.stop()
        return build_status(controller)
    except Exception as e:
        logger.error(f"Error stopping session: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to stop session"
        )


@router.get("/status", response_model=SessionStatusResponse)
async def get_status(request: Request) -> SessionStatusResponse:
    """Get the current session state."""
    return build_status(get_controller(request))


@router.websocket("/notifications")
async def stream_notifications(websocket: WebSocket):
    """
    WebSocket endpoint for stream availability.

    Sends the latest notification on connect, then every change.
    """
    controller: SessionController = websocket.app.state.controller
    await websocket.accept()
    logger.info("Notification socket connected")
    try:
        await NotificationSocketHandler.forward_notifications(websocket, controller.subscribe)
    except Exception as e:
        logger.error(f"Notification socket error: {e}", exc_info=True)
    logger.info("Notification socket disconnected")
