"""
Robot emulator entry point

Serves the provisioning protocol over the TCP bridge so the scanner (or any
client speaking the bridge framing) can be exercised without radio hardware.
"""
import argparse
import asyncio
import logging
import sys

import structlog

from emulator.server import RobotEmulator
from uniprov.config import settings
from uniprov.engine.handlers import DeviceProfile
from uniprov.exceptions import ConfigurationError
from uniprov.logging import setup_logging

logger = structlog.get_logger()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Robot provisioning emulator")
    parser.add_argument(
        "--host",
        default=settings.bridge_host,
        help="Address the TCP bridge listens on",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=settings.bridge_port,
        help="Port the TCP bridge listens on",
    )
    parser.add_argument(
        "--device-name",
        default=settings.device_name,
        help="Advertised device name",
    )
    parser.add_argument(
        "--serial",
        default=settings.serial_number,
        help="Serial number reported by GET_SERIAL",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log every frame",
    )
    return parser


async def run(args: argparse.Namespace, profile: DeviceProfile) -> None:
    emulator = RobotEmulator(profile=profile)
    try:
        await emulator.serve_tcp(args.host, args.port)
    except asyncio.CancelledError:
        logger.info("emulator_shutdown_requested")
    finally:
        await emulator.stop()


def main() -> None:
    """Main entry point"""
    args = build_parser().parse_args()
    setup_logging("emulator", level=logging.DEBUG if args.verbose else logging.INFO)
    try:
        profile = DeviceProfile(device_name=args.device_name, serial_number=args.serial)
    except ConfigurationError as exc:
        logger.error("invalid_device_profile", error=exc.message, **exc.details)
        sys.exit(2)
    try:
        asyncio.run(run(args, profile))
    except KeyboardInterrupt:
        logger.info("emulator_stopped_by_user")


if __name__ == "__main__":
    main()
