"""Independent read-only queries against the host's OS and hardware."""
from __future__ import annotations

import logging
import os
import platform
import re
import socket
import subprocess
import sys
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import psutil

try:
    import pyudev  # type: ignore[import]
except ModuleNotFoundError:  # pragma: no cover - udev only exists on Linux
    pyudev = None  # type: ignore[assignment]

from .errors import SourceUnavailable

logger = logging.getLogger(__name__)

_CPUINFO_PATH = Path("/proc/cpuinfo")
_DMI_PATH = Path("/sys/class/dmi/id")
_POWER_SUPPLY_PATH = Path("/sys/class/power_supply")
_DRM_PATH = Path("/sys/class/drm")
_NET_CLASS_PATH = Path("/sys/class/net")
_EDID_HEADER = b"\x00\xff\xff\xff\xff\xff\xff\x00"
_NVIDIA_VENDOR_ID = "0x10de"

_CPU_VENDORS = {
    "GenuineIntel": "Intel",
    "AuthenticAMD": "AMD",
    "HygonGenuine": "Hygon",
    "CentaurHauls": "VIA",
}
_PCI_VENDORS = {
    _NVIDIA_VENDOR_ID: "NVIDIA",
    "0x1002": "AMD",
    "0x1022": "AMD",
    "0x8086": "Intel",
    "0x1af4": "Red Hat, Inc.",
    "0x15ad": "VMware",
    "0x1234": "QEMU",
    "0x80ee": "VirtualBox",
}
_TEMPERATURE_SENSORS = ("coretemp", "cpu_thermal", "k10temp", "zenpower", "acpitz")


@dataclass(frozen=True)
class SourceResult:
    """Outcome of one fetcher run: a value, or the reason there is none."""

    source: str
    value: Any = None
    reason: Optional[str] = None

    @property
    def available(self) -> bool:
        return self.reason is None

    def value_or(self, default: Any) -> Any:
        return self.value if self.available else default


def run_source(name: str, fetch: Callable[[], Any]) -> SourceResult:
    """Invoke ``fetch`` and fold every failure into an unavailable result."""
    try:
        return SourceResult(name, value=fetch())
    except SourceUnavailable as exc:
        logger.debug("Source %s unavailable: %s", name, exc.reason)
        return SourceResult(name, reason=exc.reason)
    except Exception as exc:  # pylint: disable=broad-except
        logger.debug("Source %s failed", name, exc_info=True)
        return SourceResult(name, reason=f"{type(exc).__name__}: {exc}")


def _read_text(path: Path) -> Optional[str]:
    if not path.exists():
        return None
    try:
        value = path.read_text(encoding="utf-8", errors="replace").strip()
    except OSError:
        return None
    return value or None


def _run(command: List[str]) -> Optional[str]:
    try:
        result = subprocess.run(command, capture_output=True, text=True, timeout=5, check=True)
    except (OSError, subprocess.SubprocessError):
        return None
    return result.stdout.strip() or None


# -- cpu ---------------------------------------------------------------------


def parse_cpuinfo(text: str) -> Tuple[str, str]:
    """Return ``(manufacturer, brand)`` from the first processor block."""
    fields: Dict[str, str] = {}
    for line in text.splitlines():
        if not line.strip():
            if fields:
                break
            continue
        key, _, value = line.partition(":")
        fields.setdefault(key.strip().lower(), value.strip())

    vendor_id = fields.get("vendor_id", "")
    manufacturer = _CPU_VENDORS.get(vendor_id, vendor_id)
    model_name = fields.get("model name") or fields.get("hardware") or fields.get("cpu model") or ""
    return manufacturer, split_brand(manufacturer, model_name)


def split_brand(manufacturer: str, model_name: str) -> str:
    brand = re.sub(r"\((?:R|TM)\)", "", model_name, flags=re.IGNORECASE)
    brand = re.sub(r"\s+", " ", brand).strip()
    if manufacturer and brand.lower().startswith(manufacturer.lower()):
        brand = brand[len(manufacturer):].strip()
    return brand


def fetch_cpu() -> Dict[str, Any]:
    manufacturer, brand = "", ""
    system_name = platform.system()
    if system_name == "Linux":
        text = _read_text(_CPUINFO_PATH)
        if text:
            manufacturer, brand = parse_cpuinfo(text)
    elif system_name == "Darwin":
        model_name = _run(["/usr/sbin/sysctl", "-n", "machdep.cpu.brand_string"]) or ""
        manufacturer = "Apple" if model_name.startswith("Apple") else model_name.split(" ", 1)[0]
        brand = split_brand(manufacturer, model_name)
    if not brand:
        brand = platform.processor()

    freq = psutil.cpu_freq()
    speed = round(freq.current / 1000, 2) if freq and freq.current else 0
    if not (manufacturer or brand or speed):
        raise SourceUnavailable("cpu", "no CPU identity available")
    return {"manufacturer": manufacturer, "brand": brand, "speed": speed}


def fetch_cpu_temperature() -> Dict[str, Any]:
    read_sensors = getattr(psutil, "sensors_temperatures", None)
    if read_sensors is None:
        raise SourceUnavailable("cpu_temperature", "temperature sensors not supported")
    temps = read_sensors()
    if not temps:
        raise SourceUnavailable("cpu_temperature", "no temperature sensors found")

    for name in _TEMPERATURE_SENSORS:
        entries = temps.get(name)
        if entries and entries[0].current is not None:
            return {"main": float(entries[0].current)}

    for entries in temps.values():
        if entries and entries[0].current is not None:
            return {"main": float(entries[0].current)}
    raise SourceUnavailable("cpu_temperature", "no sensor reported a reading")


_LOAD_LOCK = threading.Lock()


def prime_current_load() -> None:
    """Start psutil's per-core interval so the first request is not all zeros."""
    with _LOAD_LOCK:
        psutil.cpu_percent(interval=None, percpu=True)


def fetch_current_load() -> List[float]:
    # psutil measures since its previous call in this process; overlapping
    # requests share that interval, the lock only keeps them from splitting it.
    with _LOAD_LOCK:
        loads = psutil.cpu_percent(interval=None, percpu=True)
    return [float(load) for load in loads]


# -- memory / os / chassis -------------------------------------------------------


def fetch_memory() -> Dict[str, int]:
    vm = psutil.virtual_memory()
    return {
        "total": int(vm.total),
        "used": int(vm.total - vm.free),
        "free": int(vm.free),
    }


def _linux_release() -> Tuple[str, str]:
    try:
        release = platform.freedesktop_os_release()
    except OSError:
        return "", ""
    return release.get("NAME", ""), release.get("VERSION_ID", "")


def fetch_os_info() -> Dict[str, str]:
    system_name = platform.system()
    distro, release = "", ""
    if system_name == "Linux":
        distro, release = _linux_release()
    elif system_name == "Darwin":
        distro, release = "macOS", platform.mac_ver()[0]
    elif system_name == "Windows":
        distro, release = f"Windows {platform.release()}", platform.version()

    return {
        "platform": sys.platform,
        "distro": distro,
        "release": release,
        "kernel": platform.release(),
        "arch": platform.machine(),
    }


def _read_dmi(field: str) -> Optional[str]:
    return _read_text(_DMI_PATH / field)


def fetch_system() -> Dict[str, Optional[str]]:
    system_name = platform.system()
    if system_name == "Linux":
        info = {
            "manufacturer": _read_dmi("sys_vendor"),
            "model": _read_dmi("product_name"),
            "version": _read_dmi("product_version"),
            "serial": _read_dmi("product_serial"),
            "uuid": _read_dmi("product_uuid"),
        }
    elif system_name == "Darwin":
        info = {
            "manufacturer": "Apple Inc.",
            "model": _run(["/usr/sbin/sysctl", "-n", "hw.model"]),
        }
    else:
        raise SourceUnavailable("system", f"chassis identity not supported on {system_name or 'this platform'}")

    if not any(info.values()):
        raise SourceUnavailable("system", "no chassis identity exposed")
    return info


# -- battery -------------------------------------------------------------------


def _battery_details() -> Dict[str, Optional[str]]:
    for supply in sorted(_POWER_SUPPLY_PATH.glob("BAT*")):
        return {
            "type": _read_text(supply / "technology"),
            "model": _read_text(supply / "model_name"),
        }
    return {}


def fetch_battery() -> Dict[str, Any]:
    read_battery = getattr(psutil, "sensors_battery", None)
    battery = read_battery() if read_battery else None
    if battery is None:
        return {"hasBattery": False}

    plugged = bool(battery.power_plugged)
    secsleft = battery.secsleft
    if secsleft in (psutil.POWER_TIME_UNLIMITED, psutil.POWER_TIME_UNKNOWN) or secsleft is None or secsleft < 0:
        minutes = 0
    else:
        minutes = int(secsleft // 60)

    info: Dict[str, Any] = {
        "hasBattery": True,
        "percent": float(battery.percent),
        "isCharging": plugged and battery.percent < 100,
        "timeRemaining": minutes,
        "acConnected": plugged,
    }
    info.update(_battery_details())
    return info


# -- graphics ------------------------------------------------------------------


def parse_edid(data: bytes) -> Dict[str, Any]:
    """Extract vendor, model, physical size and preferred mode from an EDID blob."""
    if len(data) < 128 or data[:8] != _EDID_HEADER:
        return {}

    code = (data[8] << 8) | data[9]
    vendor = "".join(chr(((code >> shift) & 0x1F) + 64) for shift in (10, 5, 0))
    info: Dict[str, Any] = {
        "vendor": vendor,
        "sizex": data[21] * 10,
        "sizey": data[22] * 10,
    }

    if data[54] or data[55]:
        info["resolutionX"] = data[56] | ((data[58] & 0xF0) << 4)
        info["resolutionY"] = data[59] | ((data[61] & 0xF0) << 4)

    for offset in (54, 72, 90, 108):
        block = data[offset:offset + 18]
        if block[:3] == b"\x00\x00\x00" and block[3] == 0xFC:
            info["model"] = block[5:18].decode("ascii", errors="ignore").split("\n")[0].strip()
            break
    return info


def _drm_controllers() -> List[Dict[str, Any]]:
    if pyudev is None:
        return []
    controllers = []
    for card in pyudev.Context().list_devices(subsystem="drm"):
        if not card.sys_name.startswith("card") or "-" in card.sys_name:
            continue
        parent = card.find_parent("pci")
        if parent is None:
            continue
        properties = parent.properties
        vendor_id = "0x" + (properties.get("PCI_ID") or ":").split(":")[0].lower()
        vram_bytes = _read_text(Path(card.sys_path) / "device" / "mem_info_vram_total")
        controllers.append(
            {
                "vendorId": vendor_id,
                "vendor": properties.get("ID_VENDOR_FROM_DATABASE") or _PCI_VENDORS.get(vendor_id),
                "model": properties.get("ID_MODEL_FROM_DATABASE"),
                "vram": int(vram_bytes) // (1024 * 1024) if vram_bytes and vram_bytes.isdigit() else 0,
                "bus": (parent.subsystem or "").upper() or None,
            }
        )
    return controllers


def _nvidia_controllers() -> List[Dict[str, Any]]:
    output = _run(
        [
            "nvidia-smi",
            "--query-gpu=name,memory.total,pci.bus_id",
            "--format=csv,noheader,nounits",
        ]
    )
    controllers = []
    for line in (output or "").splitlines():
        parts = [part.strip() for part in line.split(",")]
        if len(parts) < 3 or not parts[0]:
            continue
        controllers.append(
            {
                "vendor": "NVIDIA",
                "model": parts[0],
                "vram": int(parts[1]) if parts[1].isdigit() else 0,
                "bus": "PCI",
            }
        )
    return controllers


def _drm_displays() -> List[Dict[str, Any]]:
    displays = []
    for connector in sorted(_DRM_PATH.glob("card*-*")):
        if _read_text(connector / "status") != "connected":
            continue
        edid_path = connector / "edid"
        try:
            info = parse_edid(edid_path.read_bytes()) if edid_path.exists() else {}
        except OSError:
            info = {}
        modes = (_read_text(connector / "modes") or "").splitlines()
        match = re.match(r"(\d+)x(\d+)", modes[0]) if modes else None
        if match:
            info["resolutionX"], info["resolutionY"] = int(match.group(1)), int(match.group(2))
        displays.append(info)
    return displays


def fetch_graphics() -> Dict[str, List[Dict[str, Any]]]:
    nvidia = _nvidia_controllers()
    if platform.system() != "Linux":
        if not nvidia:
            raise SourceUnavailable("graphics", "no graphics backend for this platform")
        return {"controllers": nvidia, "displays": []}

    controllers = _drm_controllers()
    if nvidia:
        controllers = [item for item in controllers if item["vendorId"] != _NVIDIA_VENDOR_ID] + nvidia
    return {"controllers": controllers, "displays": _drm_displays()}


# -- disks / network -------------------------------------------------------------


def fetch_filesystems() -> List[Dict[str, Any]]:
    filesystems = []
    for part in psutil.disk_partitions(all=False):
        try:
            usage = psutil.disk_usage(part.mountpoint)
        except OSError:
            continue
        filesystems.append(
            {
                "fs": part.device,
                "type": part.fstype,
                "size": usage.total,
                "used": usage.used,
                "available": usage.free,
                "use": usage.percent,
                "mount": part.mountpoint,
            }
        )
    return filesystems


def _is_internal(name: str, stat: Any, ip4: Optional[str], ip6: Optional[str]) -> bool:
    flags = getattr(stat, "flags", "") or ""
    if "loopback" in flags.split(","):
        return True
    if name.lower().startswith("lo"):
        return True
    return bool((ip4 and ip4.startswith("127.")) or ip6 == "::1")


def _interface_type(name: str) -> str:
    if (_NET_CLASS_PATH / name / "wireless").exists() or name.lower().startswith(("wl", "wifi")):
        return "wireless"
    return "wired"


def fetch_network() -> List[Dict[str, Any]]:
    addrs = psutil.net_if_addrs()
    stats = psutil.net_if_stats()

    interfaces = []
    for name, entries in addrs.items():
        ip4 = next((addr.address for addr in entries if addr.family == socket.AF_INET), None)
        ip6 = next((addr.address for addr in entries if addr.family == socket.AF_INET6), None)
        mac = next((addr.address for addr in entries if addr.family == psutil.AF_LINK), None)
        if ip6:
            ip6 = ip6.split("%", 1)[0]
        stat = stats.get(name)
        interfaces.append(
            {
                "iface": name,
                "ip4": ip4,
                "ip6": ip6,
                "mac": mac,
                "internal": _is_internal(name, stat, ip4, ip6),
                "type": _interface_type(name),
                "speed": stat.speed if stat and stat.speed and stat.speed > 0 else 0,
            }
        )
    return interfaces


# -- local primitives --------------------------------------------------------------


def local_primitives() -> Dict[str, Any]:
    """Values that are always available from the running process itself."""
    return {
        "hostname": socket.gethostname(),
        "uptime": int(max(0.0, time.time() - psutil.boot_time())),
        "cores": psutil.cpu_count(logical=True) or os.cpu_count() or 0,
        "platform": sys.platform,
        "release": platform.release(),
        "arch": platform.machine(),
    }


SOURCES: Dict[str, Callable[[], Any]] = {
    "cpu": fetch_cpu,
    "cpu_temperature": fetch_cpu_temperature,
    "current_load": fetch_current_load,
    "memory": fetch_memory,
    "os_info": fetch_os_info,
    "system": fetch_system,
    "battery": fetch_battery,
    "graphics": fetch_graphics,
    "filesystems": fetch_filesystems,
    "network": fetch_network,
}
