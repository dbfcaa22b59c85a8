"""User and system resources.

These families are not cached entities: they answer questions about the
account and the server rather than holding records to sync.
"""

from __future__ import annotations

import logging
from typing import Any

from ..exceptions import RemoteOperationError
from ..transport import ApiResponse, ResilientTransport

logger = logging.getLogger(__name__)


def _json_or_raise(response: ApiResponse, resource: str, operation: str) -> Any:
    if not response.ok:
        raise RemoteOperationError(resource, operation, response.status, response.text())
    return response.json()


class UserResource:
    """The authenticated account (/api/whoami)."""

    def __init__(self, transport: ResilientTransport):
        self.transport = transport

    async def get_current_user(self) -> dict[str, Any]:
        payload = _json_or_raise(
            await self.transport.get(self.transport.config.health_endpoint), "User", "whoami"
        )
        return payload if isinstance(payload, dict) else {"value": payload}


class SystemResource:
    """Server maintenance: backups, cleanup and version/status."""

    def __init__(self, transport: ResilientTransport):
        self.transport = transport

    async def create_backup(self, backup_name: str | None = None) -> Any:
        params = [("name", backup_name)] if backup_name else None
        result = _json_or_raise(
            await self.transport.get("/api/makebackup", params=params), "System", "backup"
        )
        logger.info(f"Server backup created: {result}")
        return result

    async def cleanup(self, *options: str) -> Any:
        """Run server cleanup. Options are passed as flags, e.g. cleanup("deepClean")."""
        params = [(option, "true") for option in options]
        return _json_or_raise(
            await self.transport.get("/api/cleanup", params=params), "System", "cleanup"
        )

    async def get_status(self) -> Any:
        return _json_or_raise(await self.transport.get("/api/version"), "System", "status")
