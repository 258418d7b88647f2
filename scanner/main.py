"""
Scanner entry point

Sub-commands:
- scan: discover robots and harvest serial numbers until interrupted
- fetch: harvest the serial number of one device
- provision: push a Wi-Fi configuration to one device
- list: print the stored ``mac|serial`` lines
- serve-api: run the monitoring API
"""
import argparse
import asyncio
import functools
import logging
import sys
from typing import Optional

import structlog
import uvicorn

from scanner.ble import BleakCentralTransport
from scanner.discovery import DiscoveredDevice, discover
from scanner.runner import DeviceScanner
from uniprov.config import settings
from uniprov.engine.transport import TCPBridgeTransport, Transport
from uniprov.logging import setup_logging
from uniprov.models import ExchangeStatus, WifiMode
from uniprov.storage.scan_store import ScanStore

logger = structlog.get_logger()


def parse_endpoint(value: str) -> tuple:
    host, _, port = value.rpartition(":")
    if not host or not port.isdigit():
        raise argparse.ArgumentTypeError(f"expected host:port, got {value!r}")
    return host, int(port)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Robot provisioning scanner")
    parser.add_argument(
        "--tcp",
        type=parse_endpoint,
        metavar="HOST:PORT",
        help="Talk to an emulator over the TCP bridge instead of BLE",
    )
    parser.add_argument(
        "--db",
        default=str(settings.scan_db_path),
        help="Scan record database",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log every frame",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    scan = sub.add_parser("scan", help="Discover devices and harvest serial numbers")
    scan.add_argument("--rounds", type=int, help="Stop after this many discovery rounds")
    scan.add_argument(
        "--duration",
        type=float,
        default=settings.scan_duration_sec,
        help="Seconds per discovery round",
    )

    fetch = sub.add_parser("fetch", help="Harvest the serial number of one device")
    fetch.add_argument("address", nargs="?", help="Device address (defaults to the TCP endpoint)")

    provision = sub.add_parser("provision", help="Push a Wi-Fi configuration to one device")
    provision.add_argument("address", nargs="?", help="Device address (defaults to the TCP endpoint)")
    provision.add_argument("--ssid", required=True)
    provision.add_argument("--password", required=True)
    provision.add_argument("--country", default="US")
    provision.add_argument(
        "--mode",
        choices=[mode.name.lower() for mode in WifiMode],
        default=WifiMode.STATION.name.lower(),
    )

    sub.add_parser("list", help="Print stored mac|serial lines")

    api = sub.add_parser("serve-api", help="Run the monitoring API")
    api.add_argument("--host", default=settings.api_host)
    api.add_argument("--port", type=int, default=settings.api_port)

    return parser


async def _connect_ble(address: str) -> Transport:
    return await BleakCentralTransport.connect(address, timeout_sec=settings.connect_timeout_sec)


async def _connect_tcp(host: str, port: int, _address: str) -> Transport:
    return await TCPBridgeTransport.connect(host, port, timeout_sec=settings.connect_timeout_sec)


def _build_scanner(args: argparse.Namespace) -> DeviceScanner:
    store = ScanStore(args.db, namespace=settings.scan_namespace)
    if args.tcp:
        connect = functools.partial(_connect_tcp, *args.tcp)
    else:
        connect = _connect_ble
    return DeviceScanner(store, connect)


def _target(args: argparse.Namespace) -> Optional[str]:
    if args.address:
        return args.address
    if args.tcp:
        return f"{args.tcp[0]}:{args.tcp[1]}"
    return None


async def run_command(args: argparse.Namespace) -> int:
    scanner = _build_scanner(args)

    if args.command == "scan":
        if args.tcp:
            endpoint = f"{args.tcp[0]}:{args.tcp[1]}"

            async def discover_devices():
                return [DiscoveredDevice(address=endpoint, name=settings.device_name)]
        else:
            discover_devices = functools.partial(discover, settings.name_prefixes, args.duration)
        await scanner.run(discover_devices, max_rounds=args.rounds)
        return 0

    address = _target(args)
    if address is None:
        logger.error("device_address_required", command=args.command)
        return 2

    if args.command == "fetch":
        result = await scanner.fetch_serial(address)
        ok = result.status in (ExchangeStatus.SCANNED, ExchangeStatus.SKIPPED)
    else:
        result = await scanner.provision(
            address,
            ssid=args.ssid,
            password=args.password,
            country=args.country,
            mode=WifiMode[args.mode.upper()],
        )
        ok = result.status == ExchangeStatus.PROVISIONED

    print(result.model_dump_json())
    return 0 if ok else 1


def main() -> None:
    """Main entry point"""
    args = build_parser().parse_args()
    setup_logging("scanner", level=logging.DEBUG if args.verbose else logging.INFO)

    if args.command == "list":
        sys.stdout.write(ScanStore(args.db, namespace=settings.scan_namespace).export_device_list())
        return

    if args.command == "serve-api":
        from uniprov.api.deps import get_scan_store
        from uniprov.api.server import app

        store = ScanStore(args.db, namespace=settings.scan_namespace)
        app.dependency_overrides[get_scan_store] = lambda: store
        uvicorn.run(app, host=args.host, port=args.port)
        return

    try:
        sys.exit(asyncio.run(run_command(args)))
    except KeyboardInterrupt:
        logger.info("scanner_stopped_by_user")


if __name__ == "__main__":
    main()
