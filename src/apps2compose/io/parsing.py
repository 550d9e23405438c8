"""Loading app.yml manifests into the small model the pipeline works with.

Only the fields the pipeline and the built-in compiler need are typed; the
rest of each service stays available in ``ServiceDef.raw``.
"""

from dataclasses import dataclass, field
from pathlib import Path

import yaml

from apps2compose.core.constants import MAIN_CONTAINER, SHARED_CAPABILITY_CONTAINER
from apps2compose.core.errors import ManifestError
from apps2compose.pacts.types import PortPriority


@dataclass
class ServiceDef:
    """One container of an app.

    ``port`` is None when the service does not publish a web port of its own
    (the main container then gets the platform default port).
    ``port_priority`` is None when unset, which means OPTIONAL.
    ``required_ports`` maps protocol ("tcp"/"udp") to host port → container port.
    """
    name: str
    image: str | None = None
    port: int | None = None
    port_priority: PortPriority | None = None
    required_ports: dict[str, dict[int, int]] = field(default_factory=dict)
    mounts: dict = field(default_factory=dict)
    raw: dict = field(default_factory=dict)


@dataclass
class AppManifest:
    metadata: dict
    services: dict[str, ServiceDef]

    @property
    def implements(self) -> str | None:
        return self.metadata.get("implements") or None

    @property
    def main_container(self) -> str:
        """The only service, or the one called "main"."""
        if len(self.services) == 1:
            return next(iter(self.services))
        if MAIN_CONTAINER in self.services:
            return MAIN_CONTAINER
        raise ManifestError(
            f"no main container: {len(self.services)} services and none named "
            f"'{MAIN_CONTAINER}'")

    @property
    def primary_container(self) -> str:
        """Container that stands for the app: "service" if declared, else main."""
        if SHARED_CAPABILITY_CONTAINER in self.services:
            return SHARED_CAPABILITY_CONTAINER
        return self.main_container


def _parse_port(value, what: str) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise ManifestError(f"{what}: expected a port number, got {value!r}")
    try:
        port = int(value)
    except ValueError:
        raise ManifestError(f"{what}: expected a port number, got {value!r}") from None
    if not 0 < port < 65536:
        raise ManifestError(f"{what}: port {port} out of range")
    return port


def _parse_required_ports(name: str, spec) -> dict[str, dict[int, int]]:
    if spec is None:
        return {}
    if not isinstance(spec, dict):
        raise ManifestError(f"service {name}: required_ports must be a mapping")
    result = {}
    for proto in ("tcp", "udp"):
        ports = spec.get(proto) or {}
        if not isinstance(ports, dict):
            raise ManifestError(f"service {name}: required_ports.{proto} must be a mapping")
        result[proto] = {
            _parse_port(host, f"service {name} required {proto} port"):
                _parse_port(inner, f"service {name} required {proto} port")
            for host, inner in ports.items()
        }
    return result


def _parse_service(name: str, svc) -> ServiceDef:
    if not isinstance(svc, dict):
        raise ManifestError(f"service {name}: expected a mapping")
    port = svc.get("port")
    try:
        priority = (PortPriority.parse(svc["port_priority"])
                    if svc.get("port_priority") is not None else None)
    except ValueError as exc:
        raise ManifestError(f"service {name}: {exc}") from None
    mounts = svc.get("mounts") or {}
    if not isinstance(mounts, dict):
        raise ManifestError(f"service {name}: mounts must be a mapping")
    return ServiceDef(
        name=name,
        image=svc.get("image"),
        port=_parse_port(port, f"service {name}") if port is not None else None,
        port_priority=priority,
        required_ports=_parse_required_ports(name, svc.get("required_ports")),
        mounts=mounts,
        raw=svc,
    )


def load_manifest(stream) -> AppManifest:
    """Parse an app.yml stream (or string). Raises ManifestError."""
    try:
        doc = yaml.safe_load(stream)
    except yaml.YAMLError as exc:
        raise ManifestError(f"invalid YAML: {exc}") from None
    if not isinstance(doc, dict):
        raise ManifestError("app.yml must be a mapping")
    metadata = doc.get("metadata") or {}
    if not isinstance(metadata, dict):
        raise ManifestError("metadata must be a mapping")
    implements = metadata.get("implements")
    if implements is not None and not isinstance(implements, str):
        raise ManifestError(f"metadata.implements must be a string, got {implements!r}")
    services = doc.get("services")
    if not isinstance(services, dict) or not services:
        raise ManifestError("services must be a non-empty mapping")
    manifest = AppManifest(
        metadata=metadata,
        services={str(n): _parse_service(str(n), s) for n, s in services.items()},
    )
    # Resolve eagerly so a manifest without a main container fails here
    _ = manifest.main_container
    return manifest


def load_manifest_file(path: Path) -> AppManifest:
    """Load an app.yml from disk. OSError propagates (missing manifest)."""
    with open(path, encoding="utf-8") as f:
        return load_manifest(f)


def list_app_dirs(apps_dir: Path) -> list[Path]:
    """App directories in sorted order (hidden directories skipped)."""
    return sorted(p for p in apps_dir.iterdir()
                  if p.is_dir() and not p.name.startswith("."))
