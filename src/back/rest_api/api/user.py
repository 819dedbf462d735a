"""Per-request user wrapper around a resolved account."""
from __future__ import annotations

from typing import Any

from .accounts import Account, Capability, UserAccount
from .context import RequestContext
from .visibility import VisibilityFilter

_MISSING = object()

GUEST_SCOPE = ''


class UserVariableStore:
    """Key/value variables per account name.

    Outlives requests and configuration reloads; guests share one scope.
    """

    def __init__(self) -> None:
        self._scopes: dict[str, dict[str, Any]] = {}

    def scope(self, key: str) -> dict[str, Any]:
        return self._scopes.setdefault(key, {})

    def clear(self) -> None:
        self._scopes.clear()


class User:
    """A resolved account bound to the current request."""

    def __init__(
        self,
        account: Account,
        context: RequestContext,
        variables: UserVariableStore,
        visibility: VisibilityFilter,
    ):
        self._account = account
        self._context = context
        self._visibility = visibility
        self._vars = variables.scope(self.name if self.name is not None else GUEST_SCOPE)

    @property
    def account(self) -> Account:
        return self._account

    @property
    def context(self) -> RequestContext:
        return self._context

    @property
    def is_guest(self) -> bool:
        return not isinstance(self._account, UserAccount)

    @property
    def name(self) -> str | None:
        if isinstance(self._account, UserAccount):
            return self._account.name
        return None

    @property
    def values(self) -> dict[str, Any]:
        return dict(self._account.values)

    def can(self, capability: Capability) -> bool:
        return self._account.can(capability)

    # Variables

    def get(self, name: str, default: Any = None) -> Any:
        return self._vars.get(name, default)

    def set(self, name: str, value: Any) -> 'User':
        self._vars[name] = value
        return self

    def unset(self, name: str) -> 'User':
        self._vars.pop(name, None)
        return self

    def has(self, name: str) -> bool:
        return self._vars.get(name, _MISSING) is not _MISSING

    # Visibility

    def is_dir_visible(self, path: str, with_dot: bool | None = None) -> bool:
        return self._is_visible(path, True, with_dot)

    def is_file_visible(self, path: str, with_dot: bool | None = None) -> bool:
        return self._is_visible(path, False, with_dot)

    def _is_visible(self, path: str, is_dir: bool, with_dot: bool | None) -> bool:
        if not self._account.is_active:
            return False
        return self._visibility.is_visible(
            path,
            is_dir=is_dir,
            files=self._account.files,
            exclude=self._account.exclude,
            with_dot=self._visibility.effective_with_dot(self._account.with_dot, with_dot),
        )

    def __repr__(self) -> str:
        return f'User(name={self.name!r}, guest={self.is_guest})'
