"""System-level endpoints."""
from fastapi import APIRouter, Depends

from uniprov.api.deps import get_scan_store
from uniprov.config import settings

router = APIRouter(prefix="/api/system", tags=["system"])


@router.get("/health")
async def system_health(scan_store=Depends(get_scan_store)):
    return {
        "status": "healthy",
        "scanned_devices": scan_store.count(),
        "namespace": scan_store.namespace,
    }


@router.get("/config")
async def get_config():
    return {
        "device_name": settings.device_name,
        "name_prefixes": settings.name_prefixes,
        "handshake_timeout_sec": settings.handshake_timeout_sec,
        "response_timeout_sec": settings.response_timeout_sec,
        "chunk_size": settings.chunk_size,
        "bridge": f"{settings.bridge_host}:{settings.bridge_port}",
        "scan_namespace": settings.scan_namespace,
    }
