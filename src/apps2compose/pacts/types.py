"""Public data types for compilers and extensions."""

from dataclasses import dataclass, field
from enum import IntEnum


class PortPriority(IntEnum):
    """How strongly an app needs a given public port.

    Ordered: a higher value may evict a lower one from a contested port.
    Two REQUIRED claims on the same port cannot both be satisfied.
    """
    OPTIONAL = 0
    RECOMMENDED = 1
    REQUIRED = 2

    @classmethod
    def parse(cls, value) -> "PortPriority":
        """Accept an enum member, its lowercase name, or None (OPTIONAL)."""
        if value is None:
            return cls.OPTIONAL
        if isinstance(value, cls):
            return value
        try:
            return cls[str(value).upper()]
        except KeyError:
            raise ValueError(f"unknown port priority '{value}'") from None

    def __str__(self) -> str:
        return self.name.lower()


@dataclass
class PortCacheEntry:
    """A claim on one public port, persisted between runs (ports.cache.yml)."""
    app: str
    internal_port: int
    container: str
    dynamic: bool = False
    implements: str | None = None
    priority: PortPriority = PortPriority.OPTIONAL

    def owned_by(self, app: str, container: str) -> bool:
        return self.app == app and self.container == container

    def to_dict(self) -> dict:
        return {
            "app": self.app,
            "internal_port": self.internal_port,
            "container": self.container,
            "dynamic": self.dynamic,
            "implements": self.implements,
            "priority": str(self.priority),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PortCacheEntry":
        return cls(
            app=data["app"],
            internal_port=int(data["internal_port"]),
            container=data["container"],
            dynamic=bool(data.get("dynamic", False)),
            implements=data.get("implements"),
            priority=PortPriority.parse(data.get("priority")),
        )


@dataclass
class PortMapElement:
    """One published port of a container, as handed to compilers (ports.yml)."""
    internal_port: int
    public_port: int
    dynamic: bool = False

    def to_dict(self) -> dict:
        return {
            "dynamic": self.dynamic,
            "internal_port": self.internal_port,
            "public_port": self.public_port,
        }


@dataclass
class CompileResult:
    """Output of a spec compiler for a single app."""
    spec: dict
    metadata: dict
    tor_entries: str = ""
    i2p_entries: str = ""
    caddy_entries: list = field(default_factory=list)


@dataclass
class PlatformConfig:
    """Platform-wide knobs loaded from apps2compose.yaml."""
    reserved_ports: frozenset = frozenset({80, 433, 443, 8333})
    ip_subnet: str = "10.21.21"
    ip_first_suffix: int = 20
    ip_last_suffix: int = 255
    default_port: int = 3000
    always_installed: tuple = ("bitcoind",)
