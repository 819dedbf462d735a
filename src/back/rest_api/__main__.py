"""Run the server: ``python -m rest_api [--host H] [--port P] [--config FILE] [--watch] [WORKSPACE]``."""
from __future__ import annotations

import argparse
from pathlib import Path

import uvicorn

from .api import APIConfig, create_app
from .observability import configure_logging


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog='rest_api', description=__doc__)
    parser.add_argument('workspace', nargs='?', default=None, help='directory to serve (default: $WORKSPACE_ROOT or cwd)')
    parser.add_argument('--host', default='127.0.0.1')
    parser.add_argument('--port', type=int, default=8000)
    parser.add_argument('--config', type=Path, default=None, help='JSON configuration document')
    parser.add_argument('--watch', action=argparse.BooleanOptionalAction, default=None,
                        help='reload when the configuration file changes')
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging()

    config = None
    if args.workspace is not None or args.config is not None:
        workspace = Path(args.workspace) if args.workspace else Path.cwd()
        config = APIConfig(workspace_root=workspace)
        if args.config is not None:
            config.config_path = args.config

    app = create_app(config, watch_config=args.watch)
    uvicorn.run(app, host=args.host, port=args.port)
    return 0


if __name__ == '__main__':
    raise SystemExit(main())
