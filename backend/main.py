"""
PeerDrop: FastAPI application entry point.

Builds the Session Controller on a LAN channel adapter, serves the REST
API and the WebSocket event stream.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from api.routes import init_routes, router
from api.websocket import ConnectionManager
from channel.lan import LanAdapter
from config import API_HOST, API_PORT
from session.controller import SessionController

# --- Logging ---
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def create_app(controller: SessionController) -> FastAPI:
    """Wire ``controller`` into a FastAPI app."""
    ws_manager = ConnectionManager()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Attach event broadcasting; tear the session down on exit."""
        logger.info("Starting PeerDrop services...")
        controller.on_event(ws_manager.handle_event)
        logger.info(f"PeerDrop ready, API: {API_HOST}:{API_PORT}")
        try:
            yield
        finally:
            logger.info("Shutting down PeerDrop services...")
            await controller.shutdown()

    app = FastAPI(
        title="PeerDrop",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:5173", "http://127.0.0.1:5173",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Inject the controller into routes
    init_routes(controller)
    app.include_router(router)

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        await ws_manager.connect(websocket)
        try:
            while True:
                # Keep the connection alive; we don't expect client messages
                await websocket.receive_text()
        except WebSocketDisconnect:
            await ws_manager.disconnect(websocket)

    return app


app = create_app(SessionController(adapter_factory=LanAdapter))


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        app,
        host=API_HOST,
        port=API_PORT,
        log_level="info",
    )
