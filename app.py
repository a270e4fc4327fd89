"""
Fleetwatch - Vessel State Engine
Dead-reckoned fleet positions and operational alerts for display clients
"""
import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import settings
from fleetwatch.routes import fleet_routes
from fleetwatch.services.ais_stream import AISStreamClient
from fleetwatch.services.connection import ConnectionLifecycle
from fleetwatch.services.fleet_engine import FleetEngine
from fleetwatch.services.scheduler import Ticker
from fleetwatch.services.websocket_service import WebSocketManager

# Setup logging
logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


def watch_ticker(ticker: Ticker):
    """Done-callback logging a ticker that died"""
    def on_done(task: asyncio.Task):
        if ticker.failed:
            logger.critical(f"💥 {ticker.name} ticker died ({ticker.error!r}), fleet state is frozen until restart")
    return on_done


def build_engine() -> FleetEngine:
    config = settings.fleet_config()
    connection = ConnectionLifecycle(
        heartbeat_timeout=timedelta(seconds=settings.HEARTBEAT_TIMEOUT_SECONDS),
        backoff_initial=timedelta(seconds=settings.RECONNECT_BACKOFF_SECONDS),
        backoff_max=timedelta(seconds=settings.RECONNECT_BACKOFF_MAX_SECONDS),
    )
    return FleetEngine(config=config, connection=connection)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup/shutdown events
    """
    # Startup
    logger.info("🚀 Fleetwatch Starting...")
    logger.info(f"Environment: {settings.ENV}")

    engine = build_engine()
    ws_manager = WebSocketManager(
        snapshot_provider=lambda: engine.snapshot().model_dump(mode="json"),
        queue_size=settings.WS_QUEUE_SIZE,
    )
    engine.subscribe(ws_manager.publish)
    app.state.engine = engine
    app.state.ws_manager = ws_manager

    tickers = [
        Ticker("kinematics", engine.config.tick_interval_seconds, engine.tick),
        Ticker("eviction", engine.config.eviction_interval_seconds, engine.evict_stale),
    ]
    app.state.tickers = tickers
    tasks = []
    for ticker in tickers:
        task = asyncio.create_task(ticker.run())
        task.add_done_callback(watch_ticker(ticker))
        tasks.append(task)

    ais_client = None
    if settings.AISSTREAM_API_KEY:
        ais_client = AISStreamClient(settings.AISSTREAM_API_KEY, engine)
        tasks.append(asyncio.create_task(ais_client.start()))
        logger.info("🚀 AIS feed started automatically")
    else:
        logger.warning("⚠️ AISSTREAM_API_KEY not set, reports only arrive via POST /api/reports")

    yield

    # Shutdown
    logger.info("⛔ Fleetwatch Shutting Down...")
    for ticker in tickers:
        ticker.stop()
    if ais_client is not None:
        await ais_client.stop()
    results = await asyncio.gather(*tasks, return_exceptions=True)
    for result in results:
        if isinstance(result, Exception):
            logger.error(f"Background task ended with error: {result!r}")

    await ws_manager.disconnect_all()


# Create FastAPI app
app = FastAPI(
    title=settings.API_TITLE,
    description=settings.API_DESCRIPTION,
    version=settings.API_VERSION,
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
    allow_methods=settings.CORS_ALLOW_METHODS,
    allow_headers=settings.CORS_ALLOW_HEADERS,
)

# Include routers
app.include_router(fleet_routes.router, prefix="/api", tags=["fleet"])


@app.get("/health")
async def health_check():
    """Health check endpoint; 503 once a background ticker has died"""
    engine: FleetEngine = app.state.engine
    failed = [t.name for t in getattr(app.state, "tickers", []) if t.failed]
    body = {
        "status": "unhealthy" if failed else "healthy",
        "environment": settings.ENV,
        "service": "Fleetwatch",
        "connection": engine.connection.state.value,
        "vessels": len(engine.store),
        "failed_tickers": failed,
    }
    if failed:
        return JSONResponse(status_code=503, content=body)
    return body


# ==================== WEBSOCKET ENDPOINTS ====================

@app.websocket("/ws/fleet")
async def websocket_fleet_endpoint(websocket: WebSocket):
    """
    WebSocket endpoint for display clients

    Sends a full snapshot on connect, then a snapshot every tick and a
    vessel_update delta for every accepted report.
    """
    ws_manager: WebSocketManager = app.state.ws_manager
    client_id = f"{websocket.client[0] if websocket.client else 'client'}-{uuid.uuid4().hex[:8]}"
    await ws_manager.connect(websocket, client_id=client_id)

    try:
        while True:
            data = await websocket.receive_json()

            if data.get("type") == "ping":
                await ws_manager.send_to_client(client_id, {"type": "pong"})

    except WebSocketDisconnect:
        await ws_manager.disconnect(client_id)
        logger.info(f"Client disconnected: {client_id}")
    except Exception as e:
        logger.error(f"WebSocket error: {e}")
        await ws_manager.disconnect(client_id)


if __name__ == "__main__":
    import uvicorn

    # Run server with Uvicorn
    uvicorn.run(
        "app:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )
