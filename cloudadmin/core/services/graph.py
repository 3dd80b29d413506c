"""
Microsoft Graph channel — a second remote surface on the same session.

Graph commands bypass the Exchange Online auto-connect: the channel
connects once with a bearer token from the auth provider and then runs
everything through ``execute_raw_command``.  It keeps its own lock and
connection state, separate from the engine's.  The connection lives in
the interpreter, so it is dropped whenever the session restarts.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import Any

from cloudadmin.core.engine.executor import CommandEngine
from cloudadmin.core.models.command import CommandResult
from cloudadmin.core.services.auth import AuthProvider

logger = logging.getLogger(__name__)

GRAPH_SCOPE = "https://graph.microsoft.com/.default"
GRAPH_CONNECT_COMMAND = "Connect-MgGraph"


class GraphChannel:
    def __init__(self, engine: CommandEngine, auth: AuthProvider, scope: str = GRAPH_SCOPE):
        self._engine = engine
        self._auth = auth
        self._scope = scope
        self._lock = asyncio.Lock()
        # session generation the Graph connection was opened on
        self._connected_generation: int | None = None

    @property
    def is_connected(self) -> bool:
        generation = self._connected_generation
        return generation is not None and generation == self._engine.session_generation

    async def ensure_connected(self) -> None:
        if self.is_connected:
            return
        async with self._lock:
            if self.is_connected:
                return
            await self._engine.initialize()

            logger.info("Connecting to Microsoft Graph using existing authentication...")
            token = await self._auth.get_access_token(self._scope)
            await self._engine.execute_raw_command(GRAPH_CONNECT_COMMAND, {"AccessToken": token})

            self._connected_generation = self._engine.session_generation
            logger.info("Microsoft Graph connection established.")

    async def run(self, name: str, params: Mapping[str, Any] | None = None) -> CommandResult:
        """Run a Graph cmdlet, connecting the channel first if needed."""
        await self.ensure_connected()
        return await self._engine.execute_raw_command(name, params)

    def reset(self) -> None:
        """Forget the connection so the next ``run`` reconnects."""
        self._connected_generation = None
