#!/usr/bin/env python3
"""Run the rest-api backend with explicit args (avoids shell interpolation)."""
from __future__ import annotations

import argparse
from pathlib import Path

import uvicorn

from rest_api.api.app import create_app
from rest_api.api.config import APIConfig
from rest_api.observability import configure_logging


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser()
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument("--workspace", type=Path, default=Path.cwd())
    parser.add_argument("--config", type=Path, default=None)
    parser.add_argument("--watch-config", action=argparse.BooleanOptionalAction, default=False)
    parser.add_argument("--min-compress-size", type=int, default=0)
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    configure_logging()
    config = APIConfig(workspace_root=args.workspace, config_path=args.config)
    app = create_app(
        config,
        watch_config=args.watch_config,
        min_compress_size=args.min_compress_size,
    )
    uvicorn.run(app, host=args.host, port=args.port)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
