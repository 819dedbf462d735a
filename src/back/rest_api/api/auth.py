"""Identity resolution from HTTP Basic credentials.

Resolution rules:
  - Credentials present: exact name match against the user accounts and a
    constant-time password comparison. Unknown name, wrong password or a
    malformed header are all 401.
  - No credentials: the guest account, if guest access is enabled; 401
    otherwise.
  - The matched account is inactive: 403.

Every attempt is recorded on the account's ``internal_globals['last_auth']``.
"""
from __future__ import annotations

import base64
import binascii
import hmac
import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from ..observability.metrics import AUTH_ATTEMPTS_TOTAL
from .accounts import Account, AccountStore
from .context import RemoteClient
from .errors import forbidden, unauthorized

logger = logging.getLogger(__name__)

LAST_AUTH_KEY = 'last_auth'


@dataclass(frozen=True)
class BasicCredentials:
    username: str
    password: str


def parse_basic_authorization(header: str | None) -> BasicCredentials | None:
    """Parse an ``Authorization: Basic ...`` header.

    Returns None when no header is present.

    Raises:
        ValueError: If the header is present but not valid Basic credentials.
    """
    if header is None or not header.strip():
        return None

    scheme, _, token = header.strip().partition(' ')
    if scheme.lower() != 'basic' or not token.strip():
        raise ValueError('Unsupported authorization scheme')

    try:
        raw = base64.b64decode(token.strip(), validate=True)
    except (binascii.Error, ValueError):
        raise ValueError('Invalid Basic credentials encoding')

    try:
        decoded = raw.decode('utf-8')
    except UnicodeDecodeError:
        decoded = raw.decode('latin-1')

    username, sep, password = decoded.partition(':')
    if not sep:
        raise ValueError('Basic credentials must contain ":"')
    return BasicCredentials(username=username, password=password)


def _passwords_equal(expected: str, given: str) -> bool:
    return hmac.compare_digest(expected.encode('utf-8'), given.encode('utf-8'))


class IdentityResolver:
    """Resolves the account behind a request, or rejects it."""

    def __init__(self, accounts: AccountStore, realm: str):
        self.accounts = accounts
        self.realm = realm

    def resolve(self, authorization: str | None, client: RemoteClient) -> Account:
        """Return the account for this request.

        Raises:
            ApiError: UNAUTHORIZED or FORBIDDEN.
        """
        try:
            credentials = parse_basic_authorization(authorization)
        except ValueError as exc:
            self._reject('malformed', client)
            raise unauthorized(self.realm, str(exc))

        if credentials is None:
            guest = self.accounts.guest
            if guest is None:
                self._reject('guest_disabled', client)
                raise unauthorized(self.realm, 'Authentication required')
            return self._accept(guest, client, name=None)

        user = self.accounts.find_user(credentials.username)
        if user is None or not _passwords_equal(user.password, credentials.password):
            if user is not None:
                self._record(user, 'invalid_password', client)
            self._reject('invalid_credentials', client)
            raise unauthorized(self.realm, 'Invalid credentials')

        return self._accept(user, client, name=user.name)

    def _accept(self, account: Account, client: RemoteClient, *, name: str | None) -> Account:
        if not account.is_active:
            self._record(account, 'inactive', client)
            AUTH_ATTEMPTS_TOTAL.labels(outcome='inactive').inc()
            logger.warning('Auth rejected: inactive account user=%s client=%s', name, client.address)
            raise forbidden('Account is not active')

        self._record(account, 'ok', client)
        AUTH_ATTEMPTS_TOTAL.labels(outcome='guest' if name is None else 'user').inc()
        logger.debug('Auth success: user=%s client=%s', name, client.address)
        return account

    def _reject(self, reason: str, client: RemoteClient) -> None:
        AUTH_ATTEMPTS_TOTAL.labels(outcome=reason).inc()
        logger.info('Auth failure: %s client=%s', reason, client.address)

    @staticmethod
    def _record(account: Account, outcome: str, client: RemoteClient) -> None:
        account.internal_globals[LAST_AUTH_KEY] = {
            'time': datetime.now(timezone.utc).isoformat(),
            'outcome': outcome,
            'client': client.to_dict(),
        }
