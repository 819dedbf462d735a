"""FastAPI application and request pipeline for rest-api.

Serves a workspace directory tree over HTTP and dispatches configured
endpoint patterns to Python scripts.

Example:
    # Simple usage with create_app()
    from rest_api.api import create_app
    app = create_app()

    # Custom configuration
    from pathlib import Path
    from rest_api.api import APIConfig, create_app
    config = APIConfig(workspace_root=Path('/srv/share'))
    app = create_app(config, configuration={
        'guest': False,
        'users': [{'name': 'alice', 'password': 's3cret', 'canWrite': True}],
        'endpoints': {'/hello/{name}': {'script': 'scripts/hello.py'}},
    })
"""

# Configuration
from .config import (
    APIConfig,
    ConfigGeneration,
    ConfigurationHolder,
    ConfigValidationError,
    build_generation,
    load_configuration,
    parse_configuration,
)
from .schemas import (
    AccountModel,
    ApiEndpointModel,
    Configuration,
    UserAccountModel,
    ValidatorModel,
)

# Identity
from .accounts import Account, AccountStore, Capability, UserAccount
from .auth import IdentityResolver
from .user import User

# Storage
from .storage import Storage, LocalStorage

# Dispatch
from .endpoints import EndpointRouter
from .engine import ApiMethodArguments, ScriptExecutionEngine, ValidatorArguments
from .errors import ApiError, ErrorKind
from .pipeline import RequestPipeline
from .responses import ApiResponse, ResponseBuilder

# App factory
from .app import create_app

__all__ = [
    # Configuration
    'APIConfig',
    'ConfigGeneration',
    'ConfigurationHolder',
    'ConfigValidationError',
    'build_generation',
    'load_configuration',
    'parse_configuration',
    'AccountModel',
    'ApiEndpointModel',
    'Configuration',
    'UserAccountModel',
    'ValidatorModel',
    # Identity
    'Account',
    'AccountStore',
    'Capability',
    'UserAccount',
    'IdentityResolver',
    'User',
    # Storage
    'Storage',
    'LocalStorage',
    # Dispatch
    'EndpointRouter',
    'ApiMethodArguments',
    'ScriptExecutionEngine',
    'ValidatorArguments',
    'ApiError',
    'ErrorKind',
    'RequestPipeline',
    'ApiResponse',
    'ResponseBuilder',
    # App factory
    'create_app',
]
