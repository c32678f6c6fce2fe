from contextlib import asynccontextmanager
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from routers.consultations import consultations_router
from routers.rooms import rooms_router
from backend import redis_backend
from hub import session_hub
import json
from constants import FRONTEND_URLS, LOG_LEVEL, LOG_FILE
from logging_config import get_logger, setup_logging

# Setup logging
setup_logging(log_level=LOG_LEVEL, log_file=LOG_FILE)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # Let detached chat/transcript writes finish before the loop goes away
    await session_hub.sink.drain()
    logger.info("Pending consultation writes drained")


app = FastAPI(title="Telehealth Session Relay", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=FRONTEND_URLS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)

app.include_router(rooms_router)
app.include_router(consultations_router)

logger.info("FastAPI application initialized")


@app.get("/")
def health():
    return {"message": "Telehealth API Server is running", "redis": redis_backend.ping()}


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket, token: str = None):
    """Signaling and chat socket for consultation rooms.

    Query parameters:
    - token: Optional session JWT. An invalid token does not reject the socket,
      it just leaves the connection anonymous.

    Frames are JSON objects whose "type" names the event, e.g.
    {"type": "join-room", "roomId": "r1"}.
    """
    connection_id = None
    try:
        await websocket.accept()
        connection = session_hub.connect(websocket, token)
        connection_id = connection.connection_id

        message_count = 0
        while True:
            try:
                data = await websocket.receive_text()
            except WebSocketDisconnect:
                logger.info(f"WebSocket disconnected normally for connection {connection_id}")
                break
            except Exception as e:
                logger.error(f"Error receiving message from connection {connection_id}: {e}", exc_info=True)
                break
            message_count += 1

            try:
                message = json.loads(data)
            except json.JSONDecodeError:
                logger.warning(f"Discarding non-JSON frame #{message_count} from connection {connection_id}")
                continue
            if not isinstance(message, dict) or not isinstance(message.get("type"), str):
                logger.warning(f"Discarding frame #{message_count} from connection {connection_id}: no event type")
                continue

            logger.debug(f"Received {message['type']} (#{message_count}) from connection {connection_id}")
            session_hub.handle(connection_id, message)
    except Exception as e:
        logger.error(f"WebSocket error for connection {connection_id}: {e}", exc_info=True)
    finally:
        if connection_id:
            await session_hub.disconnect(connection_id)
