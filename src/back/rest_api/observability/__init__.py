"""Logging, metrics and request correlation for rest-api.

``create_app`` installs the middleware; entry points call
``configure_logging`` once before building the app::

    from rest_api.observability import configure_logging

    configure_logging(json_output=False)
"""

from .logging import bind_request_fields, configure_logging, get_logger, request_id_ctx
from .metrics import metrics_text

__all__ = [
    'bind_request_fields',
    'configure_logging',
    'get_logger',
    'metrics_text',
    'request_id_ctx',
]
