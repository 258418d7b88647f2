"""Scanned device endpoints."""
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import PlainTextResponse

from uniprov.api.deps import get_scan_store
from uniprov.models import DeviceListResponse, ScanRecord

router = APIRouter(prefix="/api/devices", tags=["devices"])


@router.get("", response_model=DeviceListResponse)
async def list_devices(scan_store=Depends(get_scan_store)):
    records = scan_store.list_records()
    return DeviceListResponse(count=len(records), devices=records)


@router.get("/count")
async def device_count(scan_store=Depends(get_scan_store)):
    return {"count": scan_store.count()}


@router.get("/export", response_class=PlainTextResponse)
async def export_devices(scan_store=Depends(get_scan_store)):
    """One ``mac|serial`` line per scanned device"""
    return scan_store.export_device_list()


@router.get("/{mac_address}", response_model=ScanRecord)
async def get_device(mac_address: str, scan_store=Depends(get_scan_store)):
    record = scan_store.get(mac_address)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Device not scanned: {mac_address}")
    return record


@router.delete("/{mac_address}")
async def forget_device(mac_address: str, scan_store=Depends(get_scan_store)):
    if not scan_store.delete(mac_address):
        raise HTTPException(status_code=404, detail=f"Device not scanned: {mac_address}")
    return {"deleted": mac_address}
