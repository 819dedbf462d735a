"""Filesystem browsing for requests that match no custom endpoint."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

from ...accounts import Capability
from ...context import RequestContext
from ...errors import ApiError, ErrorKind, bad_request, forbidden, method_not_allowed, not_found
from ...responses import ApiResponse, Outcome
from ...storage import Storage
from ...user import User
from ...visibility import ROOT, VisibilityFilter

logger = logging.getLogger(__name__)

WRITE_METHODS = frozenset({'PUT', 'POST'})


class FileService:
    """Lists, streams, writes and deletes workspace entries for a user.

    Entries the user may not see are reported as not found.
    """

    def __init__(self, storage: Storage, visibility: VisibilityFilter):
        self.storage = storage
        self.visibility = visibility

    def relativize(self, path: str) -> str:
        """Normalize a request path to a workspace-relative path.

        Raises:
            ApiError: NOT_FOUND if the path escapes the workspace.
        """
        rel = self.visibility.normalize(path.lstrip('/'))
        if rel is None:
            raise not_found(f'Not found: {path}')
        return rel

    @contextmanager
    def _within_workspace(self, path: str) -> Iterator[None]:
        """Report storage refusals (paths resolving outside the root) as not found."""
        try:
            yield
        except ValueError as exc:
            raise not_found(f'Not found: {path}') from exc

    async def dispatch(self, context: RequestContext) -> Outcome:
        user = context.user
        if user is None:
            raise ApiError(ErrorKind.INTERNAL_ERROR, 'Request reached file dispatch without a user')

        method = context.method
        if method in ('GET', 'HEAD'):
            return self.get(user, context.path, info='info' in context.query)
        if method in WRITE_METHODS:
            body = await context.request.body()
            return self.write(user, context.path, body)
        if method == 'DELETE':
            return self.delete(user, context.path)
        raise method_not_allowed(f'{method} is not supported on workspace paths')

    def _require(self, user: User, capability: Capability) -> None:
        if not user.can(capability):
            raise forbidden(f'Account lacks {capability.value}')

    def get(self, user: User, path: str, *, info: bool = False) -> Outcome:
        """List a directory or stream a file."""
        self._require(user, Capability.OPEN)
        rel = self.relativize(path)

        with self._within_workspace(path):
            if not self.storage.exists(rel):
                raise not_found(f'Not found: {path}')

            if self.storage.is_dir(rel):
                if not user.is_dir_visible(rel):
                    raise not_found(f'Not found: {path}')
                if info:
                    return Outcome(response=ApiResponse(data=self.storage.stat(rel)))
                entries = [
                    entry for entry in self.storage.list_dir(rel)
                    if self._entry_visible(user, entry)
                ]
                return Outcome(response=ApiResponse(data=entries))

            if not user.is_file_visible(rel):
                raise not_found(f'Not found: {path}')
            entry = self.storage.stat(rel)
            if info:
                return Outcome(response=ApiResponse(data=entry))
            return Outcome.of_content(self.storage.read_bytes(rel), entry['mime'])

    def _entry_visible(self, user: User, entry: dict) -> bool:
        if entry['type'] == 'dir':
            return user.is_dir_visible(entry['path'].lstrip('/'))
        return user.is_file_visible(entry['path'].lstrip('/'))

    def write(self, user: User, path: str, content: bytes) -> Outcome:
        """Write a file, or create a directory when ``path`` ends with ``/``."""
        rel = self.relativize(path)
        if rel == ROOT:
            raise bad_request('Cannot write the workspace root')

        with self._within_workspace(path):
            wants_dir = path.endswith('/')
            exists = self.storage.exists(rel)
            is_dir = exists and self.storage.is_dir(rel)

            if wants_dir or is_dir:
                if exists and not is_dir:
                    raise bad_request(f'Not a directory: {path}')
                self._require(user, Capability.CREATE)
                if not user.is_dir_visible(rel):
                    raise not_found(f'Not found: {path}')
                if exists:
                    return Outcome(response=ApiResponse(data=self.storage.stat(rel)))
                self.storage.make_dir(rel)
                logger.info('Created directory %s', rel)
                return Outcome(response=ApiResponse(data=self.storage.stat(rel)))

            self._require(user, Capability.WRITE if exists else Capability.CREATE)
            if not user.is_file_visible(rel):
                raise not_found(f'Not found: {path}')
            self.storage.write_bytes(rel, content)
            logger.info('%s file %s (%d bytes)', 'Updated' if exists else 'Created', rel, len(content))
            return Outcome(response=ApiResponse(data=self.storage.stat(rel)))

    def delete(self, user: User, path: str) -> Outcome:
        self._require(user, Capability.DELETE)
        rel = self.relativize(path)
        if rel == ROOT:
            raise forbidden('Cannot delete the workspace root')

        with self._within_workspace(path):
            if not self.storage.exists(rel):
                raise not_found(f'Not found: {path}')
            is_dir = self.storage.is_dir(rel)
            visible = user.is_dir_visible(rel) if is_dir else user.is_file_visible(rel)
            if not visible:
                raise not_found(f'Not found: {path}')
            self.storage.delete(rel)
            logger.info('Deleted %s', rel)
        return Outcome(response=ApiResponse(data={'path': '/' + rel}))
