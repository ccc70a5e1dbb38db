"""FastAPI application serving the Haven call API."""

import logging
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

load_dotenv(dotenv_path=Path(__file__).parent.parent / ".env")

from backend.api.routes import router
from backend.api.websocket import router as websocket_router
from backend.services.call_service import call_service

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Wire the call core on startup and release its storage on shutdown."""
    orchestrator = call_service.orchestrator
    logger.info(
        f"Haven call core ready: storage={type(orchestrator.storage).__name__}, "
        f"llm={'configured' if orchestrator.engine.has_llm else 'fallback'}, "
        f"emotion chain={orchestrator.classifier.chain.order}"
    )
    try:
        yield
    finally:
        await call_service.shutdown()
        logger.info("Haven call core stopped")


app = FastAPI(
    title="Haven API",
    description="Real-time intake call orchestration for housing services",
    version="0.1.0",
    lifespan=lifespan,
)

# The browser client streams from a different origin during development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router)
app.include_router(websocket_router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("backend.main:app", host="0.0.0.0", port=8000, log_level="info")
