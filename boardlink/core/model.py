"""Core data models used across scanner, session, and uploaders."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any

from boardlink.core.encoding import decode_message
from boardlink.core.errors import InvalidFilterError, SessionConnectError

WILDCARD = "*"


class SessionState(enum.Enum):
    IDLE = "idle"
    DISCOVERING = "discovering"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTING = "disconnecting"


def make_pnpid(vendor_id: int, product_id: int) -> str:
    return f"USB\\VID_{vendor_id:04X}&PID_{product_id:04X}"


@dataclass(frozen=True)
class Peripheral:
    id: str
    vendor_id: int | None
    product_id: int | None
    name: str

    @property
    def pnpid(self) -> str | None:
        if self.vendor_id is None or self.product_id is None:
            return None
        return make_pnpid(self.vendor_id, self.product_id)


@dataclass(frozen=True)
class DiscoveryFilter:
    pnpid: frozenset[str]

    @property
    def matches_all(self) -> bool:
        return WILDCARD in self.pnpid

    @classmethod
    def from_params(cls, filters: Any) -> DiscoveryFilter:
        pnpid = filters.get("pnpid") if isinstance(filters, dict) else None
        if not isinstance(pnpid, (list, tuple)) or len(pnpid) < 1:
            raise InvalidFilterError("discovery request must include filters")
        return cls(pnpid=frozenset(str(key).upper() for key in pnpid))


@dataclass(frozen=True)
class ConnectionConfig:
    baud_rate: int
    data_bits: int = 8
    stop_bits: float = 1

    @classmethod
    def from_params(cls, peripheral_config: Any) -> ConnectionConfig:
        try:
            config = peripheral_config["config"]
            return cls(
                baud_rate=int(config["baudRate"]),
                data_bits=int(config.get("dataBits", 8)),
                stop_bits=config.get("stopBits", 1),
            )
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise SessionConnectError(
                f"connect request must include peripheralConfig.config.baudRate: {exc}"
            ) from exc


@dataclass(frozen=True)
class UploadRequest:
    board_type: str
    source_code: str
    board_config: dict[str, Any] = field(default_factory=dict)
    encoding: str = "utf8"

    @classmethod
    def from_params(cls, params: dict[str, Any]) -> UploadRequest:
        config = dict(params.get("config") or {})
        encoding = params.get("encoding") or "utf8"
        code = decode_message(params.get("message", ""), encoding).decode("utf-8", errors="replace")
        return cls(
            board_type=str(config.get("type", "")),
            source_code=code,
            board_config=config,
            encoding=encoding,
        )


@dataclass(frozen=True)
class SubprocessResult:
    exit_status: int | None
    stdout: str = ""
    stderr: str = ""
    aborted: bool = False

    @property
    def output(self) -> str:
        return "".join(part for part in (self.stdout, self.stderr) if part)
