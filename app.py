from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from routers.rooms import rooms_router, health_router
from backend import create_theme_backend
from connection_manager import ConnectionManager
from schemas.events import Frame
from services.session_coordinator import SessionCoordinator
import uuid
import asyncio
from typing import Optional
from pydantic import ValidationError
from logging_config import get_logger, setup_logging
from constants import LOG_LEVEL, LOG_FILE

# Setup logging
setup_logging(log_level=LOG_LEVEL, log_file=LOG_FILE)
logger = get_logger(__name__)


def create_app(coordinator: Optional[SessionCoordinator] = None, connections: Optional[ConnectionManager] = None) -> FastAPI:
    """Build the FastAPI application around one coordinator and one connection manager.

    Each call gets its own registries, so tests can run isolated instances.
    """
    connections = connections if connections is not None else ConnectionManager()
    if coordinator is None:
        coordinator = SessionCoordinator(transport=connections, themes=create_theme_backend())

    app = FastAPI(title="HuddleChat")

    # Configure CORS to allow all origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Allow all origins
        allow_credentials=True,
        allow_methods=["*"],  # Allow all HTTP methods
        allow_headers=["*"],  # Allow all headers
    )

    app.state.coordinator = coordinator
    app.state.connections = connections
    app.include_router(health_router)
    app.include_router(rooms_router)

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        """One chat session. Frames are JSON objects {"event": ..., "data": ...} both ways."""
        await websocket.accept()
        connection_id = uuid.uuid4().hex
        queue = connections.connect(connection_id)
        writer = asyncio.create_task(connections.pump(connection_id, queue, websocket))
        logger.info(f"WebSocket connection {connection_id} accepted ({len(connections)} live)")

        message_count = 0
        try:
            while True:
                data = await websocket.receive_text()
                message_count += 1
                logger.debug(f"Received frame #{message_count} from connection {connection_id}")

                try:
                    frame = Frame.model_validate_json(data)
                except ValidationError as e:
                    if any(err["type"] == "json_invalid" for err in e.errors()):
                        logger.warning(f"Non-JSON frame from connection {connection_id}")
                        connections.send(connection_id, "error", "Frames must be JSON objects")
                    else:
                        logger.warning(f"Frame without event name from connection {connection_id}")
                        connections.send(connection_id, "error", "Frames need an 'event' name")
                    continue

                coordinator.dispatch(connection_id, frame.event, frame.data)

        except WebSocketDisconnect:
            logger.info(f"WebSocket disconnected normally for connection {connection_id}")
        except Exception as e:
            logger.error(f"WebSocket error for connection {connection_id}: {e}", exc_info=True)
        finally:
            # Stop delivery to this socket first, then let the others hear about it
            connections.disconnect(connection_id)
            coordinator.disconnect(connection_id)
            try:
                await asyncio.wait_for(writer, timeout=1.0)
            except asyncio.TimeoutError:
                writer.cancel()
                logger.debug(f"Writer task for connection {connection_id} did not drain in time")
            logger.info(f"Connection {connection_id} closed after {message_count} frames")

    logger.info("FastAPI application initialized")
    return app


app = create_app()
