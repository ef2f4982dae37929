from dotenv import load_dotenv

# Load environment variables before PipelineConfig reads them
load_dotenv()

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI

from api.routes import router as api_router
from api.routes import images as images_route_module
from api.routes import ocr as ocr_route_module
from api.routes import perf as perf_route_module
from api.routes import tts as tts_route_module
from api.websocket import manager as channel_manager
from services.bus_finder import BusFinder, set_bus_finder

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for FastAPI.
    Builds the bus-finder pipeline on startup (unless START_PIPELINE is off)
    and disposes it on shutdown.
    """
    bus_finder = None
    start_flag = os.getenv("START_PIPELINE", "true").lower()
    if start_flag in ("1", "true", "yes"):
        try:
            bus_finder = BusFinder.from_config(channel=channel_manager)
            set_bus_finder(bus_finder)
            channel_manager.bind(bus_finder.orchestrator)
            images_route_module.set_image_store(bus_finder.image_store)
            if bus_finder.tts is not None:
                tts_route_module.set_tts_service(bus_finder.tts)

            ready = await bus_finder.initialize()
            logger.info(f"Bus finder pipeline started (ready={ready})")
        except Exception:
            logger.exception("Failed to start bus finder pipeline")

    app.state.bus_finder = bus_finder

    yield  # Server is running

    if bus_finder is not None:
        try:
            logger.info("Stopping bus finder pipeline...")
            await bus_finder.dispose()
        except Exception:
            logger.exception("Error while stopping bus finder pipeline")
        finally:
            set_bus_finder(None)
            channel_manager.bind(None)


app = FastAPI(lifespan=lifespan)
app.include_router(api_router)
app.include_router(ocr_route_module.router, prefix="/api", tags=["ocr"])
app.include_router(tts_route_module.router, prefix="/api", tags=["tts"])
app.include_router(images_route_module.router, prefix="/api", tags=["images"])
app.include_router(perf_route_module.router, prefix="/api/status", tags=["status"])
