#!/usr/bin/env python3
"""Minimal example server using the rest-api backend.

Serves ``workspace/`` with the accounts and endpoints declared in
``rest.json``.

Usage:
    python server.py
    # or: uvicorn server:app --reload

Try:
    curl http://localhost:8000/api/docs
    curl http://localhost:8000/api/hello/ada
    curl -u editor:editor -X PUT --data 'hi' http://localhost:8000/api/docs/new.md
    curl http://localhost:8000/api/visits
"""
from pathlib import Path

from rest_api.api import APIConfig, create_app
from rest_api.observability import configure_logging

HERE = Path(__file__).parent

configure_logging(json_output=False)

config = APIConfig(
    workspace_root=HERE / 'workspace',
    config_path=HERE / 'rest.json',
    cors_origins=['http://localhost:5173', 'http://localhost:3000'],
    watch_config=True,
)
app = create_app(config)


if __name__ == '__main__':
    import uvicorn

    print(f"""
╔══════════════════════════════════════════════════════════════╗
║                      REST API Server                         ║
╠══════════════════════════════════════════════════════════════╣
║  Workspace: {str(config.workspace_root):<48} ║
║  Files:     http://localhost:8000/api/                       ║
║  Health:    http://localhost:8000/health                     ║
╚══════════════════════════════════════════════════════════════╝
""")
    uvicorn.run(app, host='127.0.0.1', port=8000)
