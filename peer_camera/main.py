import argparse
import asyncio
import sys
from typing import List, Optional

from peer_camera.common.logger import setup_logger
from peer_camera.container import create_app
from peer_camera.domain.connection import Role
from peer_camera.settings import get_settings

logger = setup_logger("main")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="peer-camera", description="Peer camera / remote session")
    parser.add_argument("role", choices=[r.value for r in Role], help="Which side of the pair to run")
    parser.add_argument("-n", "--name", help="Device name shown to the peer")
    parser.add_argument("-p", "--port", type=int, help="Port the camera listens on")
    parser.add_argument("-c", "--camera-url", action="append", dest="camera_urls",
                        help="Camera base URL to probe (repeatable)")
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING or ERROR")
    return parser.parse_args(argv)


def apply_overrides(args: argparse.Namespace):
    overrides = {
        "device_name": args.name,
        "port": args.port,
        "camera_urls": args.camera_urls,
        "log_level": args.log_level,
    }
    return get_settings().model_copy(update={k: v for k, v in overrides.items() if v is not None})


async def main(args: argparse.Namespace) -> None:
    settings = apply_overrides(args)
    app = create_app(Role(args.role), settings)
    try:
        await app.start()
        logger.info(f"Running as {args.role}; press Ctrl+C to stop")
        await asyncio.Event().wait()
    finally:
        await app.stop()


def run(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    try:
        asyncio.run(main(args))
        return 0
    except KeyboardInterrupt:
        return 0
    except Exception as e:
        logger.error(f"fatal: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(run())
