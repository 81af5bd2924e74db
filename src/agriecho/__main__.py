"""
AgriEcho command line.

Usage:
    agriecho serve [--host 0.0.0.0] [--port 3000] [--debug]
    agriecho status
    agriecho sync
    agriecho retry-failed
"""

import argparse
import json
import logging
import sys

from agriecho.config import load_config
from agriecho.log import configure_logging


logger = logging.getLogger(__name__)


def _build_manager(config):
    from agriecho.offline.manager import OfflineManager
    return OfflineManager.from_config(config, health_signal=False)


def cmd_serve(args, config) -> int:
    from agriecho.server.app import create_app

    app = create_app(args.config)
    port = args.port or config.port
    logger.info(f"AgriEcho server starting on {args.host}:{port}")
    app.run(host=args.host, port=port, debug=args.debug)
    return 0


def cmd_status(args, config) -> int:
    manager = _build_manager(config)
    try:
        stats = manager.stats()
        print(json.dumps(stats, indent=2))
    finally:
        manager.shutdown()
    return 0


def cmd_sync(args, config) -> int:
    manager = _build_manager(config)
    try:
        result = manager.force_sync()
        if result is None:
            print("Offline: nothing was sent")
            return 1
        print(json.dumps(dict(result, **manager.stats()), indent=2))
        return 0 if manager.stats()['pending'] == 0 else 1
    finally:
        manager.shutdown()


def cmd_retry_failed(args, config) -> int:
    manager = _build_manager(config)
    try:
        count = manager.retry_failed()
        print(f"{count} failed item(s) returned to the queue")
    finally:
        manager.shutdown()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='agriecho', description="AgriEcho offline sync tools")
    parser.add_argument('--config', help="Config file path (JSON or YAML)")
    parser.add_argument('--log-level', default='INFO', help="Log level (default INFO)")

    subparsers = parser.add_subparsers(dest='command', required=True)

    serve = subparsers.add_parser('serve', help="Run the API server")
    serve.add_argument('--host', default='0.0.0.0', help="Bind address")
    serve.add_argument('--port', type=int, help="Port override")
    serve.add_argument('--debug', action='store_true', help="Flask debug mode")
    serve.set_defaults(func=cmd_serve)

    status = subparsers.add_parser('status', help="Print sync queue counts")
    status.set_defaults(func=cmd_status)

    sync = subparsers.add_parser('sync', help="Deliver pending items now")
    sync.set_defaults(func=cmd_sync)

    retry = subparsers.add_parser('retry-failed', help="Return failed items to the queue")
    retry.set_defaults(func=cmd_retry_failed)

    return parser


def main(argv=None) -> int:
    """Main entry point for the agriecho command."""
    args = build_parser().parse_args(argv)

    config = load_config(args.config)
    configure_logging(config.log_path, level=args.log_level)

    return args.func(args, config)


if __name__ == "__main__":
    sys.exit(main())
