"""Process lifecycle contract declared by the runtime image."""

from __future__ import annotations

import signal
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Any, Literal

from layerchef.errors import ContractError

Transport = Literal["tcp", "udp"]

TRANSPORTS: tuple[Transport, ...] = ("tcp", "udp")

DEFAULT_STOP_SIGNAL = "SIGQUIT"
DEFAULT_WORKING_DIR = "/app"
DEFAULT_BINARY_DIR = "/usr/local/bin"


@dataclass(frozen=True, slots=True)
class Endpoint:
    port: int
    transport: Transport
    role: str

    def __str__(self) -> str:
        return f"{self.port}/{self.transport}"


DEFAULT_ENDPOINTS: tuple[Endpoint, ...] = (
    Endpoint(8545, "tcp", "rpc"),
    Endpoint(8545, "udp", "discovery"),
    Endpoint(8180, "tcp", "legacy-rpc"),
    Endpoint(3001, "tcp", "fallback"),
    Endpoint(30303, "tcp", "p2p"),
    Endpoint(30303, "udp", "p2p-discovery"),
    Endpoint(9001, "tcp", "auxiliary"),
    Endpoint(8546, "tcp", "rpc-secondary"),
)


def default_entrypoint(binary: str) -> str:
    return f"{DEFAULT_BINARY_DIR}/{binary}"


@dataclass(frozen=True, slots=True)
class LifecycleContract:
    """Entrypoint, exposed endpoints and graceful stop signal of the service.

    The pipeline only declares the stop signal; draining on receipt is the
    compiled service's job.
    """

    entrypoint: str
    endpoints: tuple[Endpoint, ...] = DEFAULT_ENDPOINTS
    stop_signal: str = DEFAULT_STOP_SIGNAL
    working_dir: str = DEFAULT_WORKING_DIR

    def validate(self) -> None:
        entrypoint = PurePosixPath(self.entrypoint)
        if not entrypoint.is_absolute() or entrypoint.name in ("", "..", "."):
            raise ContractError(
                "Entrypoint must be an absolute path to an executable.",
                context={"entrypoint": self.entrypoint},
            )
        if not PurePosixPath(self.working_dir).is_absolute():
            raise ContractError(
                "Working directory must be an absolute path.",
                context={"working_dir": self.working_dir},
            )
        if self.stop_signal not in signal.Signals.__members__:
            raise ContractError(
                "Unknown stop signal.",
                hint="Use a signal name such as SIGQUIT.",
                context={"stop_signal": self.stop_signal},
            )

        seen: set[tuple[int, str]] = set()
        for endpoint in self.endpoints:
            port = endpoint.port
            if isinstance(port, bool) or not isinstance(port, int) or not 1 <= port <= 65535:
                raise ContractError(
                    "Endpoint port must be between 1 and 65535.",
                    context={"port": str(port)},
                )
            if endpoint.transport not in TRANSPORTS:
                raise ContractError(
                    "Endpoint transport must be tcp or udp.",
                    context={"port": str(port), "transport": str(endpoint.transport)},
                )
            if not isinstance(endpoint.role, str) or not endpoint.role.strip():
                raise ContractError(
                    "Endpoint role label must be non-empty.",
                    context={"endpoint": str(endpoint)},
                )
            pair = (port, endpoint.transport)
            if pair in seen:
                raise ContractError(
                    "Duplicate endpoint declaration.",
                    hint="Each (port, transport) pair may be declared once.",
                    context={"endpoint": str(endpoint)},
                )
            seen.add(pair)

    def exposed_ports(self) -> dict[str, dict[str, str]]:
        return {str(endpoint): {"role": endpoint.role} for endpoint in self.endpoints}

    def to_config(self) -> dict[str, Any]:
        return {
            "Entrypoint": [self.entrypoint],
            "ExposedPorts": self.exposed_ports(),
            "StopSignal": self.stop_signal,
            "WorkingDir": self.working_dir,
        }
