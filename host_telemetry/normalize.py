"""Unit normalization and the default table used to build snapshots."""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

GIGABYTE = 1024 ** 3


def round1(value: Any) -> float:
    """Round half-up to one decimal; missing or non-finite input becomes 0.0."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(number):
        return 0.0
    return math.floor(number * 10 + 0.5) / 10


def bytes_to_gb(value: Any) -> float:
    try:
        return round1(float(value) / GIGABYTE)
    except (TypeError, ValueError):
        return 0.0


def format_resolution(width: Any, height: Any) -> str:
    return f"{int(width or 0)}x{int(height or 0)}"


@dataclass(frozen=True)
class Local:
    """Marker: fall back to a value from the local OS primitives."""

    name: str


@dataclass(frozen=True)
class FieldSpec:
    output: str
    key: str
    default: Any


def _fields(*rows: tuple) -> tuple:
    return tuple(FieldSpec(*row) for row in rows)


# Raw value substituted for a whole source when it is unavailable.
SOURCE_DEFAULTS: Dict[str, Any] = {
    "cpu": {},
    "cpu_temperature": {"main": None},
    "current_load": [],
    "memory": {"total": 0, "used": 0, "free": 0},
    "os_info": {},
    "system": {},
    "battery": {"hasBattery": False},
    "graphics": {"controllers": [], "displays": []},
    "filesystems": [],
    "network": [],
}

# section -> (output field, raw key, default). Falsy raw values take the default.
FIELD_DEFAULTS: Dict[str, tuple] = {
    "cpu": _fields(
        ("manufacturer", "manufacturer", ""),
        ("brand", "brand", "Unknown CPU"),
        ("speed", "speed", 0),
    ),
    "os": _fields(
        ("platform", "platform", Local("platform")),
        ("distro", "distro", "Unknown"),
        ("release", "release", Local("release")),
        ("kernel", "kernel", "Unknown"),
        ("arch", "arch", Local("arch")),
    ),
    "system": _fields(
        ("manufacturer", "manufacturer", "Unknown"),
        ("model", "model", "Unknown"),
        ("version", "version", "Unknown"),
        ("serial", "serial", "N/A"),
        ("uuid", "uuid", "N/A"),
    ),
    "battery": _fields(
        ("percent", "percent", 0),
        ("isCharging", "isCharging", False),
        ("timeRemaining", "timeRemaining", 0),
        ("acConnected", "acConnected", False),
        ("type", "type", "Unknown"),
        ("model", "model", "Unknown"),
    ),
    "controller": _fields(
        ("model", "model", "Unknown"),
        ("vendor", "vendor", "Unknown"),
        ("vram", "vram", 0),
        ("bus", "bus", "Unknown"),
    ),
    "display": _fields(
        ("vendor", "vendor", "Unknown"),
        ("model", "model", "Unknown"),
        ("sizex", "sizex", 0),
        ("sizey", "sizey", 0),
    ),
    "disk": _fields(
        ("fs", "fs", "Unknown"),
        ("type", "type", "Unknown"),
        ("mount", "mount", "/"),
    ),
    "network": _fields(
        ("iface", "iface", "Unknown"),
        ("ip4", "ip4", "N/A"),
        ("ip6", "ip6", "N/A"),
        ("mac", "mac", "N/A"),
        ("type", "type", "Unknown"),
        ("speed", "speed", 0),
    ),
}


def apply_defaults(
    section: str,
    raw: Optional[Mapping[str, Any]],
    local: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    """Project ``raw`` onto the fields of ``section`` filling in defaults."""
    raw = raw or {}
    result: Dict[str, Any] = {}
    for spec in FIELD_DEFAULTS[section]:
        value = raw.get(spec.key)
        if not value:
            value = spec.default
            if isinstance(value, Local):
                value = (local or {}).get(value.name, "Unknown")
        result[spec.output] = value
    return result


def _records(raw: Any) -> Iterable[Mapping[str, Any]]:
    return [item for item in (raw or []) if isinstance(item, Mapping)]


def normalize_cpu(
    identity: Mapping[str, Any],
    temperature: Mapping[str, Any],
    loads: Sequence[Any],
    usage: float,
    cores: int,
) -> Dict[str, Any]:
    fields = apply_defaults("cpu", identity)
    return {
        "usage": round1(usage),
        "cores": cores,
        "model": f"{fields['manufacturer']} {fields['brand']}".strip(),
        "speed": fields["speed"],
        "temperature": (temperature or {}).get("main") or None,
        "loads": [round1(load) for load in loads or []],
    }


def normalize_memory(raw: Mapping[str, Any]) -> Dict[str, float]:
    total = raw.get("total") or 0
    used = raw.get("used") or 0
    return {
        "total": bytes_to_gb(total),
        "used": bytes_to_gb(used),
        "free": bytes_to_gb(raw.get("free") or 0),
        "usagePercent": round1(used / total * 100) if total else 0.0,
    }


def normalize_os(raw: Mapping[str, Any], local: Mapping[str, Any]) -> Dict[str, Any]:
    section = apply_defaults("os", raw, local)
    section["hostname"] = local["hostname"]
    section["uptime"] = int(local["uptime"])
    return section


def normalize_battery(raw: Mapping[str, Any]) -> Dict[str, Any]:
    if not raw.get("hasBattery"):
        return {"hasBattery": False}
    section = {"hasBattery": True}
    section.update(apply_defaults("battery", raw))
    section["percent"] = round1(section["percent"])
    return section


def normalize_graphics(raw: Mapping[str, Any]) -> Dict[str, List[Dict[str, Any]]]:
    displays = []
    for display in _records(raw.get("displays")):
        entry = apply_defaults("display", display)
        entry["resolution"] = format_resolution(display.get("resolutionX"), display.get("resolutionY"))
        displays.append(entry)
    return {
        "controllers": [apply_defaults("controller", item) for item in _records(raw.get("controllers"))],
        "displays": displays,
    }


def normalize_disks(raw: Any) -> List[Dict[str, Any]]:
    disks = []
    for item in _records(raw):
        entry = apply_defaults("disk", item)
        entry.update(
            {
                "size": bytes_to_gb(item.get("size")),
                "used": bytes_to_gb(item.get("used")),
                "available": bytes_to_gb(item.get("available")),
                "usePercent": round1(item.get("use")),
            }
        )
        disks.append(entry)
    return disks


def normalize_network(raw: Any) -> List[Dict[str, Any]]:
    return [apply_defaults("network", item) for item in _records(raw) if not item.get("internal")]


def compose_snapshot(
    raw: Mapping[str, Any],
    usage: float,
    local: Mapping[str, Any],
    timestamp: int,
) -> Dict[str, Any]:
    """Merge already-resolved raw source values into the response document.

    ``raw`` maps every source name to either its fetched value or its entry
    in :data:`SOURCE_DEFAULTS`.
    """
    return {
        "timestamp": timestamp,
        "cpu": normalize_cpu(
            raw["cpu"],
            raw["cpu_temperature"],
            raw["current_load"],
            usage,
            local["cores"],
        ),
        "memory": normalize_memory(raw["memory"]),
        "os": normalize_os(raw["os_info"], local),
        "system": apply_defaults("system", raw["system"]),
        "battery": normalize_battery(raw["battery"]),
        "graphics": normalize_graphics(raw["graphics"]),
        "disk": normalize_disks(raw["filesystems"]),
        "network": normalize_network(raw["network"]),
    }
