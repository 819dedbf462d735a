"""Production runtime app for rest-api.

Reads its settings from the environment (``WORKSPACE_ROOT``,
``REST_API_CONFIG``, ``CORS_ORIGINS``, ``REST_API_WATCH_CONFIG``)::

    uvicorn rest_api.runtime:app
"""

from __future__ import annotations

from .api import create_app
from .observability import configure_logging

configure_logging()
app = create_app()
