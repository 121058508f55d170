"""
Transfer Engine HTTP Server
FastAPI application exposing the transfer and history routes
"""

import logging
import os
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from config import Config
from routes.transfer_routes import router as transfer_router
from services.engine_context import EngineContext, build_engine_context
from services.transfer_service import TransferService

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=logging.INFO,
)
logger = logging.getLogger(__name__)


def create_app(context: Optional[EngineContext] = None) -> FastAPI:
    """Build the app; without a context one is built from Config at startup"""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"🔧 Worker {os.getpid()} starting...")
        if getattr(app.state, "transfer_service", None) is None:
            Config.log_environment_config()
            try:
                app.state.transfer_service = TransferService(build_engine_context())
                logger.info(f"✅ Worker {os.getpid()} transfer engine ready")
            except Exception as e:
                logger.error(f"❌ Transfer engine initialization failed: {e}")
        app.state.started_at = time.time()
        yield
        logger.info(f"🔄 Worker {os.getpid()} shutting down...")

    app = FastAPI(
        title="Phone Transfer Engine",
        description="Send native tokens to phone numbers and query transfer history",
        lifespan=lifespan,
    )
    app.state.transfer_service = TransferService(context) if context is not None else None
    app.state.started_at = time.time()
    app.include_router(transfer_router)

    @app.get("/health")
    async def health_check():
        """Readiness: the engine context must be built"""
        service = app.state.transfer_service
        if service is None:
            return JSONResponse(
                content={"status": "starting", "service": "transfer-engine", "ready": False},
                status_code=503,
            )
        return {
            "status": "healthy",
            "service": "transfer-engine",
            "ready": True,
            "signer": service.context.signer_address,
            "uptime_seconds": round(time.time() - app.state.started_at, 2),
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
