"""Shared FastAPI dependencies for the monitoring API routers."""
from functools import lru_cache

from uniprov.config import settings
from uniprov.storage.scan_store import ScanStore


@lru_cache(maxsize=1)
def get_scan_store() -> ScanStore:
    return ScanStore(settings.scan_db_path, namespace=settings.scan_namespace)
