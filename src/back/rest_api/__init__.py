"""rest-api: a workspace file tree and scripted endpoints over HTTP."""

__version__ = '0.1.0'
