"""Account store: the guest account and the named user accounts.

Accounts are built once per configuration generation and never change
while a request holds them. The only mutable part is
``Account.internal_globals``, a per-account scratch mapping the identity
resolver uses to record the last authentication.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Mapping

from .schemas import AccountModel, Configuration, UserAccountModel


class Capability(str, Enum):
    """Capability flags gating a class of operation."""

    ACTIVATE = 'can_activate'
    CLOSE = 'can_close'
    CREATE = 'can_create'
    DELETE = 'can_delete'
    EXECUTE = 'can_execute'
    OPEN = 'can_open'
    WRITE = 'can_write'


@dataclass(frozen=True)
class Account:
    """An identity with capability flags and file-visibility rules."""

    can_activate: bool = False
    can_close: bool = False
    can_create: bool = False
    can_delete: bool = False
    can_execute: bool = False
    can_open: bool = True
    can_write: bool = False
    files: tuple[str, ...] = ()
    exclude: tuple[str, ...] = ()
    is_active: bool = True
    values: Mapping[str, Any] = field(default_factory=dict)
    with_dot: bool | None = None
    internal_globals: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    def can(self, capability: Capability) -> bool:
        """Return True if this account holds ``capability``.

        Inactive accounts hold no capability at all.
        """
        if not self.is_active:
            return False
        return bool(getattr(self, capability.value))

    @classmethod
    def from_model(cls, model: AccountModel) -> 'Account':
        return cls(**_account_kwargs(model))


@dataclass(frozen=True)
class UserAccount(Account):
    """An account matched by name and password."""

    name: str = ''
    password: str = field(default='', repr=False)

    @classmethod
    def from_model(cls, model: UserAccountModel) -> 'UserAccount':
        return cls(
            name=model.name,
            password=model.password,
            **_account_kwargs(model),
        )


def _account_kwargs(model: AccountModel) -> dict[str, Any]:
    return {
        'can_activate': model.can_activate,
        'can_close': model.can_close,
        'can_create': model.can_create,
        'can_delete': model.can_delete,
        'can_execute': model.can_execute,
        'can_open': model.can_open,
        'can_write': model.can_write,
        'files': tuple(model.files),
        'exclude': tuple(model.exclude),
        'is_active': model.is_active,
        'values': dict(model.values),
        'with_dot': model.with_dot,
    }


class AccountStore:
    """Holds the guest account (if enabled) and the user accounts."""

    def __init__(self, guest: Account | None, users: Iterable[UserAccount] = ()):
        self._guest = guest
        self._users = tuple(users)

    @property
    def guest(self) -> Account | None:
        """The anonymous account, or None when guest access is disabled."""
        return self._guest

    @property
    def users(self) -> tuple[UserAccount, ...]:
        return self._users

    def find_user(self, name: str) -> UserAccount | None:
        """Return the first user account whose name equals ``name`` exactly."""
        for user in self._users:
            if user.name == name:
                return user
        return None

    @classmethod
    def from_configuration(cls, configuration: Configuration) -> 'AccountStore':
        guest_setting = configuration.guest
        if guest_setting is False:
            guest = None
        elif guest_setting is True:
            guest = Account()
        else:
            guest = Account.from_model(guest_setting)

        users = [UserAccount.from_model(u) for u in configuration.users]
        return cls(guest, users)
