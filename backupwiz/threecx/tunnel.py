"""
SSH port forward from the sync host to a tenant's 3CX PostgreSQL port.

One tunnel per tenant per sync cycle. The same SSH connection is reused for
SFTP transfers during that cycle and torn down with it.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

import asyncssh

from backupwiz.core.exceptions import TunnelUnavailableError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LocalEndpoint:
    host: str
    port: int


class SSHTunnel:
    """Forward an ephemeral local port through an SSH session to ``remote_db_host:remote_db_port``.

    Usable as ``async with SSHTunnel(...) as endpoint``; the listener and the
    SSH connection are closed on every exit path.
    """

    def __init__(
        self,
        ssh_host: str,
        ssh_port: int,
        ssh_user: str,
        ssh_password: str,
        remote_db_host: str,
        remote_db_port: int,
        *,
        connect_timeout: float = 30.0,
        keepalive_interval: int = 10,
        known_hosts: Optional[str] = None,
        local_host: str = "127.0.0.1",
    ):
        self.ssh_host = ssh_host
        self.ssh_port = ssh_port
        self.ssh_user = ssh_user
        self._ssh_password = ssh_password
        self.remote_db_host = remote_db_host
        self.remote_db_port = remote_db_port
        self.connect_timeout = connect_timeout
        self.keepalive_interval = keepalive_interval
        self.known_hosts = known_hosts
        self.local_host = local_host

        self._connection: Optional[asyncssh.SSHClientConnection] = None
        self._listener: Optional[asyncssh.SSHListener] = None
        self.endpoint: Optional[LocalEndpoint] = None

    @property
    def connection(self) -> asyncssh.SSHClientConnection:
        if self._connection is None:
            raise TunnelUnavailableError(f"SSH tunnel to {self.ssh_host} is not open")
        return self._connection

    @property
    def is_open(self) -> bool:
        return self._listener is not None

    async def open(self) -> LocalEndpoint:
        if self.endpoint is not None:
            return self.endpoint

        target = f"{self.ssh_user}@{self.ssh_host}:{self.ssh_port}"
        try:
            self._connection = await asyncio.wait_for(
                asyncssh.connect(
                    self.ssh_host,
                    port=self.ssh_port,
                    username=self.ssh_user,
                    password=self._ssh_password,
                    known_hosts=self.known_hosts,
                    keepalive_interval=self.keepalive_interval,
                ),
                timeout=self.connect_timeout,
            )
            self._listener = await self._connection.forward_local_port(
                self.local_host, 0, self.remote_db_host, self.remote_db_port
            )
        except asyncssh.PermissionDenied as e:
            await self.close()
            logger.error(f"SSH tunnel authentication failed for {target}: {e}")
            raise TunnelUnavailableError(
                f"SSH authentication failed for {target}", details={"host": self.ssh_host}
            ) from e
        except asyncio.TimeoutError as e:
            await self.close()
            logger.error(f"SSH tunnel to {target} timed out after {self.connect_timeout}s")
            raise TunnelUnavailableError(
                f"SSH connection to {target} timed out", details={"host": self.ssh_host}
            ) from e
        except (asyncssh.Error, asyncssh.ChannelOpenError, OSError) as e:
            await self.close()
            logger.error(f"SSH tunnel to {target} unavailable: {e}")
            raise TunnelUnavailableError(
                f"SSH tunnel to {target} unavailable: {e}", details={"host": self.ssh_host}
            ) from e

        self.endpoint = LocalEndpoint(self.local_host, self._listener.get_port())
        logger.info(
            f"SSH tunnel open: {self.endpoint.host}:{self.endpoint.port} -> "
            f"{self.ssh_host} -> {self.remote_db_host}:{self.remote_db_port}"
        )
        return self.endpoint

    async def close(self) -> None:
        listener, self._listener = self._listener, None
        connection, self._connection = self._connection, None
        self.endpoint = None

        if listener is not None:
            listener.close()
            await listener.wait_closed()
        if connection is not None:
            connection.close()
            await connection.wait_closed()
            logger.debug(f"SSH tunnel to {self.ssh_host} closed")

    async def __aenter__(self) -> LocalEndpoint:
        return await self.open()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
