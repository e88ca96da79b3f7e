"""Connection configuration."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ConnectionConfig:
    """Immutable connection settings for a fabric manager daemon."""

    hostname: str = "127.0.0.1"
    unix_domain_socket: str | None = None
    timeout_ms: int = 5000

    @property
    def address(self) -> str:
        """The address to connect to. A socket path wins over the hostname."""
        if self.unix_domain_socket:
            return self.unix_domain_socket
        return self.hostname
