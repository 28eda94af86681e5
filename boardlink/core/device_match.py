"""Port-to-filter matching and friendly-name resolution."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from boardlink.core.model import DiscoveryFilter, Peripheral, make_pnpid

UNKNOWN_DEVICE = "Unknown device"


def _port_pnpid(port: Any) -> str | None:
    vid = getattr(port, "vid", None)
    pid = getattr(port, "pid", None)
    if vid is None or pid is None:
        return None
    return make_pnpid(vid, pid)


def resolve_name(pnpid: str | None, device_names: Mapping[str, str]) -> str:
    if pnpid is None:
        return UNKNOWN_DEVICE
    return device_names.get(pnpid.upper(), UNKNOWN_DEVICE)


def filter_matches(pnpid: str | None, discovery_filter: DiscoveryFilter) -> bool:
    if discovery_filter.matches_all:
        return True
    return pnpid is not None and pnpid.upper() in discovery_filter.pnpid


def match_port(
    port: Any,
    discovery_filter: DiscoveryFilter,
    device_names: Mapping[str, str],
) -> Peripheral | None:
    """Return a `Peripheral` for a pyserial port entry if it passes the filter."""
    pnpid = _port_pnpid(port)
    if not filter_matches(pnpid, discovery_filter):
        return None
    path = port.device
    return Peripheral(
        id=path,
        vendor_id=getattr(port, "vid", None),
        product_id=getattr(port, "pid", None),
        name=f"{resolve_name(pnpid, device_names)} ({path})",
    )
