"""
Connection manager for third-party services.

The `connection` tool is a meta-tool: one (provider, action, params) call is
routed to the handler registered for that provider.
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from loguru import logger

MAX_RESULT_CHARS = 10000


class ConnectorError(Exception):
    """A connection action could not be performed."""


class ConnectionHandler(ABC):
    """One external service (GitHub, Vercel, ...)."""

    name: str = ""
    display_name: str = ""

    @abstractmethod
    def execute(self, action: str, params: Dict[str, Any], token: str) -> Any:
        """Perform an action and return JSON-serializable data."""

    def actions(self) -> List[str]:
        return []


@dataclass
class Connection:
    provider: str
    token: str
    account: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


class ConnectionManager:
    """Registry of handlers plus the tokens of connected providers."""

    def __init__(self):
        self._handlers: Dict[str, ConnectionHandler] = {}
        self._connections: Dict[str, Connection] = {}

    def register(self, handler: ConnectionHandler):
        self._handlers[handler.name] = handler

    def connect(self, provider: str, token: str, account: Optional[str] = None):
        if provider not in self._handlers:
            raise KeyError(f"Unknown provider '{provider}'")
        self._connections[provider] = Connection(provider=provider, token=token, account=account)
        logger.info(f"Connected to {provider}{f' as {account}' if account else ''}")

    def is_connected(self, provider: str) -> bool:
        return provider in self._connections

    def connected_providers(self) -> List[str]:
        return sorted(self._connections)

    def summary(self) -> str:
        """Connected-services block for the system prompt."""
        if not self._connections:
            return "No external services connected."
        lines = []
        for provider in self.connected_providers():
            handler = self._handlers[provider]
            conn = self._connections[provider]
            label = handler.display_name or provider
            line = f"- {label}: Connected{f' ({conn.account})' if conn.account else ''}"
            if handler.actions():
                line += f". Actions: {', '.join(handler.actions())}"
            lines.append(line)
        return "Connected services:\n" + "\n".join(lines) + '\n\nUse the "connection" tool to interact with these services.'

    def execute(self, provider: str, action: str, params: Optional[Dict[str, Any]] = None) -> str:
        """
        Run an action on a connected provider.

        Args:
            provider: Registered provider name
            action: Provider-specific action
            params: Action parameters

        Returns:
            Pretty JSON, truncated to MAX_RESULT_CHARS

        Raises:
            ConnectorError: Unknown or unconnected provider, or handler failure
        """
        handler = self._handlers.get(provider)
        if handler is None:
            available = ", ".join(sorted(self._handlers)) or "none"
            raise ConnectorError(f'Unknown provider "{provider}". Available: {available}')

        if not self.is_connected(provider):
            raise ConnectorError(
                f"Not connected to {handler.display_name or provider}. Ask the user to connect it first."
            )

        try:
            result = handler.execute(action, params or {}, self._connections[provider].token)
        except ConnectorError:
            raise
        except Exception as e:
            logger.error(f"{provider}.{action} failed: {e}")
            raise ConnectorError(str(e) or "Action failed") from e

        text = json.dumps(result, indent=2, default=str)
        if len(text) > MAX_RESULT_CHARS:
            text = text[:MAX_RESULT_CHARS] + "\n... (truncated)"
        return text
