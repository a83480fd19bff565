"""
Drone Flight Log Pipeline - FastAPI Backend

Main application entry point and configuration.
"""

import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from flightlog.api.flight_logs import router as flight_logs_router, battery_router
from flightlog.config import DATA_FOLDER_ENV, DEFAULT_DATA_FOLDER
from flightlog.services.repository import init_repository, get_repository


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Starting Flight Log Pipeline backend")

    repo = get_repository()
    if repo.data_folder is None and len(repo) == 0:
        data_folder = Path(os.getenv(DATA_FOLDER_ENV, str(DEFAULT_DATA_FOLDER)))
        if data_folder.exists():
            init_repository(data_folder)
            logger.info(f"Preloaded flight logs from folder: {data_folder}")
        else:
            logger.info(f"Data folder not found, starting empty: {data_folder}")

    yield

    logger.info("Shutting down Flight Log Pipeline backend")


app = FastAPI(
    title="Drone Flight Log Pipeline",
    description="""
    Backend API for drone flight-log reconstruction.

    ## Features
    - Parse DJI flight records with the dji-log-parser decoder
    - Heuristic fallback when the decoder is not installed
    - GPS track, altitude/speed/battery series, warnings and errors
    - Battery usage and health per battery serial number

    ## Data Flow
    1. Upload a record via POST /flight-logs/parse?filename=...
    2. List parsed logs via GET /flight-logs
    3. Get telemetry via GET /flight-logs/{id}/data-points
    4. Review batteries via GET /batteries
    """,
    version="0.1.0",
    lifespan=lifespan,
)


# CORS middleware (allow all origins for development)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


app.include_router(flight_logs_router)
app.include_router(battery_router)


@app.get("/")
async def root():
    """Root endpoint - basic health check."""
    return {
        "name": "Drone Flight Log Pipeline",
        "version": "0.1.0",
        "status": "running",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    repo = get_repository()

    return {
        "status": "healthy",
        "data_folder": str(repo.data_folder) if repo.data_folder else None,
        "flight_log_count": len(repo),
    }
