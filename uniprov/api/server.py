"""
FastAPI server for scan monitoring

Provides REST API for:
- Listing, counting and exporting scanned devices
- Looking up a single device by MAC address
- Health and effective configuration
"""
import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from uniprov.api.routes import ROUTERS
from uniprov.logging import setup_logging

setup_logging("uniprov-api")
logger = structlog.get_logger()

app = FastAPI(
    title="Provisioning Scan Monitor",
    description="Read-only view of the serial numbers harvested by the scanner",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["GET", "DELETE"],
    allow_headers=["*"],
)

for router in ROUTERS:
    app.include_router(router)


@app.get("/")
async def root():
    return {
        "service": "Provisioning Scan Monitor",
        "version": "0.1.0",
        "status": "operational",
    }
