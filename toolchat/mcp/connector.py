from __future__ import annotations

import asyncio
from typing import List, Optional, Sequence, Tuple

import httpx

from toolchat.errors import ConnectionConfigError, ToolCatalogError, ToolchatError, TransportError
from toolchat.logging_config import logger
from toolchat.models import ConnectionParams, ToolDescriptor
from toolchat.settings import settings

from .base import ToolTransport
from .stdio import StdioTransport
from .streamable_http import StreamableHttpTransport


def _strip_executable(command: str) -> str:
    # "/usr/bin/node" and "node.exe" both count as "node".
    name = command.replace("\\", "/").rsplit("/", 1)[-1]
    if name.lower().endswith(".exe"):
        name = name[:-4]
    return name


def _npx_package(args: Sequence[str]) -> Optional[str]:
    for idx, arg in enumerate(args):
        if arg in ("-y", "--yes") and idx + 1 < len(args):
            return args[idx + 1]
    for arg in args:
        if not arg.startswith("-"):
            return arg
    return None


def _package_base_name(package: str) -> str:
    # "@scope/pkg@1.2.3" -> "@scope/pkg"; "pkg@latest" -> "pkg"
    if package.startswith("@"):
        return "@" + package[1:].split("@", 1)[0]
    return package.split("@", 1)[0]


class ToolConnector:
    """
    Builds transports from connection descriptors and performs the
    initialize + tools/list handshake.
    """

    def __init__(
        self,
        *,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
        allowed_commands: Optional[List[str]] = None,
        allowed_npm_packages: Optional[List[str]] = None,
        reconnect_attempts: Optional[int] = None,
        reconnect_backoff_seconds: Optional[float] = None,
        request_timeout: Optional[float] = None,
    ) -> None:
        self._http_transport = http_transport
        self._request_timeout = request_timeout
        self._allowed_commands = (
            allowed_commands if allowed_commands is not None else settings.get_allowed_commands()
        )
        self._allowed_npm_packages = (
            allowed_npm_packages
            if allowed_npm_packages is not None
            else settings.get_allowed_npm_packages()
        )
        self._reconnect_attempts = reconnect_attempts or settings.reconnect_attempts
        self._backoff = (
            reconnect_backoff_seconds
            if reconnect_backoff_seconds is not None
            else settings.reconnect_backoff_seconds
        )

    def validate(self, params: ConnectionParams) -> None:
        """
        Reject descriptors that must never reach the network or a subprocess.
        """
        if params.kind == "url":
            if not params.url:
                raise ConnectionConfigError("URL-style connection requires 'url'")
            return

        if not params.command:
            raise ConnectionConfigError("Command-style connection requires 'command'")
        executable = _strip_executable(params.command)
        if executable not in self._allowed_commands:
            raise ConnectionConfigError(
                f"Command '{params.command}' is not allowed",
                details={"allowed": list(self._allowed_commands)},
            )
        if executable == "npx" and self._allowed_npm_packages is not None:
            package = _npx_package(params.args)
            if package is None or _package_base_name(package) not in self._allowed_npm_packages:
                raise ConnectionConfigError(
                    f"npm package '{package}' is not allowed",
                    details={"allowed": list(self._allowed_npm_packages)},
                )

    def build_transport(self, params: ConnectionParams) -> ToolTransport:
        self.validate(params)
        if params.kind == "url" and params.url:
            return StreamableHttpTransport(
                params.url,
                headers=params.headers,
                http_transport=self._http_transport,
                timeout=self._request_timeout,
            )
        if params.command:
            return StdioTransport(
                params.command, params.args, env=params.env, timeout=self._request_timeout
            )
        raise ConnectionConfigError("Connection requires either 'url' or 'command'")

    async def connect(
        self, params: ConnectionParams
    ) -> Tuple[ToolTransport, List[ToolDescriptor]]:
        """
        Open a transport and fetch its tool catalog.

        Raises ConnectionConfigError for invalid descriptors, TransportError
        when the handshake fails and ToolCatalogError when tools/list fails.
        The transport is closed on every failure path.
        """
        transport = self.build_transport(params)
        try:
            await transport.initialize()
        except ToolchatError as exc:
            await self._close_quietly(transport)
            raise TransportError(
                f"Tool provider handshake failed: {exc.message}",
                details=exc.details,
            ) from exc

        try:
            raw_tools = await transport.list_tools()
        except ToolchatError as exc:
            await self._close_quietly(transport)
            raise ToolCatalogError(
                f"Failed to fetch tool catalog: {exc.message}",
                details=exc.details,
            ) from exc

        tools: List[ToolDescriptor] = []
        for entry in raw_tools:
            descriptor = ToolDescriptor.from_catalog_entry(entry)
            if descriptor is not None:
                tools.append(descriptor)
        logger.info(
            "connector: connected %s transport %s with %d tools",
            params.kind,
            transport.transport_id,
            len(tools),
        )
        return transport, tools

    async def reconnect(
        self, params: ConnectionParams, *, attempts: Optional[int] = None
    ) -> Tuple[ToolTransport, List[ToolDescriptor]]:
        """
        Re-establish a URL-style transport with a bounded number of attempts.

        Command-style descriptors are refused immediately; the caller decides
        how to degrade.
        """
        if not params.reconnectable:
            raise TransportError(
                "Command-style tool providers cannot be reconnected from another process"
            )

        max_attempts = attempts or self._reconnect_attempts
        last_error: Optional[ToolchatError] = None
        for attempt in range(1, max_attempts + 1):
            try:
                return await self.connect(params)
            except ConnectionConfigError:
                raise
            except ToolchatError as exc:
                last_error = exc
                logger.warning(
                    "connector: reconnect attempt %d/%d to %s failed: %s",
                    attempt,
                    max_attempts,
                    params.url,
                    exc.message,
                )
                if attempt < max_attempts and self._backoff > 0:
                    await asyncio.sleep(self._backoff)

        raise TransportError(
            f"Reconnect failed after {max_attempts} attempt(s)",
            details={"reason": last_error.message if last_error else None},
        )

    @staticmethod
    async def _close_quietly(transport: ToolTransport) -> None:
        try:
            await transport.aclose()
        except Exception:  # pragma: no cover - best effort cleanup
            logger.debug("connector: error while closing transport", exc_info=True)


__all__ = ["ToolConnector"]
