"""Pydantic models for the host configuration document.

The document uses the camelCase keys of the editor settings it originated
from (``canOpen``, ``withDot``, ...). Snake-case keys are accepted too.
Keys that only concern the editor integration (``autoStart``, ``port``,
``ssl``, ...) are ignored.
"""
from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

DEFAULT_REALM = 'REST API'


def _alias(camel: str, snake: str, *extra: str) -> AliasChoices:
    return AliasChoices(camel, snake, *extra)


def _as_pattern_list(value: Any) -> list[str]:
    """Accept a single glob, a list of globs, or nothing."""
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    return [str(v).strip() for v in value if str(v).strip()]


class AccountModel(BaseModel):
    """Capability flags and visibility rules of one account."""

    model_config = ConfigDict(extra='ignore', frozen=True)

    can_activate: bool = Field(default=False, validation_alias=_alias('canActivate', 'can_activate'))
    can_close: bool = Field(default=False, validation_alias=_alias('canClose', 'can_close'))
    can_create: bool = Field(default=False, validation_alias=_alias('canCreate', 'can_create'))
    can_delete: bool = Field(default=False, validation_alias=_alias('canDelete', 'can_delete'))
    can_execute: bool = Field(default=False, validation_alias=_alias('canExecute', 'can_execute'))
    can_open: bool = Field(default=True, validation_alias=_alias('canOpen', 'can_open', 'canRead'))
    can_write: bool = Field(default=False, validation_alias=_alias('canWrite', 'can_write'))
    exclude: list[str] = Field(default_factory=list)
    files: list[str] = Field(default_factory=list)
    is_active: bool = Field(default=True, validation_alias=_alias('isActive', 'is_active'))
    values: dict[str, Any] = Field(default_factory=dict)
    with_dot: bool | None = Field(default=None, validation_alias=_alias('withDot', 'with_dot'))

    @field_validator('files', 'exclude', mode='before')
    @classmethod
    def _coerce_patterns(cls, value: Any) -> list[str]:
        return _as_pattern_list(value)

    @field_validator('values', mode='before')
    @classmethod
    def _coerce_values(cls, value: Any) -> dict[str, Any]:
        return value or {}


class UserAccountModel(AccountModel):
    """A named account matched against Basic credentials."""

    name: str = Field(min_length=1)
    password: str = Field(default='', repr=False)

    @field_validator('password', mode='before')
    @classmethod
    def _coerce_password(cls, value: Any) -> str:
        return '' if value is None else str(value)


class ApiEndpointModel(BaseModel):
    """Binding of a URL pattern to a script module."""

    model_config = ConfigDict(extra='ignore', frozen=True)

    script: str = Field(min_length=1)
    options: Any = None
    state: Any = None
    is_active: bool = Field(default=True, validation_alias=_alias('isActive', 'is_active'))


class ValidatorModel(BaseModel):
    """The global request validator script."""

    model_config = ConfigDict(extra='ignore', frozen=True)

    script: str = Field(min_length=1)
    options: Any = None
    state: Any = None


class Configuration(BaseModel):
    """One generation of the host configuration."""

    model_config = ConfigDict(extra='ignore', frozen=True)

    endpoints: dict[str, ApiEndpointModel] = Field(default_factory=dict)
    globals: Any = None
    guest: bool | AccountModel = True
    realm: str = DEFAULT_REALM
    users: list[UserAccountModel] = Field(default_factory=list)
    validator: ValidatorModel | None = None
    with_dot: bool = Field(default=False, validation_alias=_alias('withDot', 'with_dot'))

    @field_validator('endpoints', mode='before')
    @classmethod
    def _coerce_endpoints(cls, value: Any) -> Any:
        return value or {}

    @field_validator('guest', mode='before')
    @classmethod
    def _coerce_guest(cls, value: Any) -> Any:
        return True if value is None else value

    @field_validator('realm', mode='before')
    @classmethod
    def _coerce_realm(cls, value: Any) -> str:
        realm = str(value).strip() if value is not None else ''
        return realm or DEFAULT_REALM

    @field_validator('users', mode='before')
    @classmethod
    def _coerce_users(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, dict):
            return [value]
        return value

    @field_validator('validator', mode='before')
    @classmethod
    def _coerce_validator(cls, value: Any) -> Any:
        if isinstance(value, str):
            return {'script': value} if value.strip() else None
        return value
