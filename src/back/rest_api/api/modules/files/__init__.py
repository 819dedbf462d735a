"""Files module for rest-api.

Serves the workspace file tree for paths that match no custom endpoint.
"""
from .service import FileService

__all__ = [
    'FileService',
]
