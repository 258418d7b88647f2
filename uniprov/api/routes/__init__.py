"""Route bundles for the monitoring API."""
from . import devices, system

ROUTERS = [
    devices.router,
    system.router,
]
