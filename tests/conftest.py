import pytest

from host_telemetry.aggregator import Aggregator
from host_telemetry.errors import SourceUnavailable
from host_telemetry.sampler import CounterSampler

GIB = 1024 ** 3

LOCAL = {
    "hostname": "testhost",
    "uptime": 3600,
    "cores": 4,
    "platform": "linux",
    "release": "6.8.0-45-generic",
    "arch": "x86_64",
}


def raw_sources():
    """Fetchers returning fixed raw readings shaped like the real ones."""
    return {
        "cpu": lambda: {"manufacturer": "Intel", "brand": "Core i7-10510U CPU @ 1.80GHz", "speed": 2.3},
        "cpu_temperature": lambda: {"main": 48.0},
        "current_load": lambda: [10.04, 14.96, 0.0, 99.99],
        "memory": lambda: {"total": 16 * GIB, "used": 8 * GIB, "free": 8 * GIB},
        "os_info": lambda: {
            "platform": "linux",
            "distro": "Ubuntu",
            "release": "24.04",
            "kernel": "6.8.0-45-generic",
            "arch": "x86_64",
        },
        "system": lambda: {"manufacturer": "LENOVO", "model": "20U9", "version": "ThinkPad X13"},
        "battery": lambda: {"hasBattery": False},
        "graphics": lambda: {
            "controllers": [{"vendor": "Intel", "model": "CometLake-U GT2", "vram": 0, "bus": "PCI"}],
            "displays": [{"vendor": "BOE", "model": "NE135FBM", "resolutionX": 2256, "resolutionY": 1504}],
        },
        "filesystems": lambda: [
            {
                "fs": "/dev/nvme0n1p2",
                "type": "ext4",
                "size": 500 * GIB,
                "used": 125 * GIB,
                "available": 375 * GIB,
                "use": 25.0,
                "mount": "/",
            }
        ],
        "network": lambda: [
            {"iface": "lo", "ip4": "127.0.0.1", "ip6": "::1", "mac": "00:00:00:00:00:00", "internal": True},
            {
                "iface": "wlp0s20f3",
                "ip4": "192.168.1.20",
                "ip6": "fe80::1",
                "mac": "aa:bb:cc:dd:ee:ff",
                "internal": False,
                "type": "wireless",
                "speed": 0,
            },
        ],
    }


def unavailable(source):
    def fetch():
        raise SourceUnavailable(source, "not present")

    return fetch


def idle_sampler():
    return CounterSampler(read_sample=lambda: [{"idle": 100.0, "user": 50.0}])


@pytest.fixture
def make_aggregator():
    created = []

    def factory(sources=None, sampler=None, fetch_timeout=2.0, local=None):
        aggregator = Aggregator(
            sampler=sampler or idle_sampler(),
            sources=raw_sources() if sources is None else sources,
            fetch_timeout=fetch_timeout,
            max_workers=10,
            local=local or (lambda: dict(LOCAL)),
        )
        created.append(aggregator)
        return aggregator

    yield factory
    for aggregator in created:
        aggregator.close()
