"""Built-in spec compiler: app.yml to compose spec, registry entry and Tor/I2P/Caddy entries."""
# pylint: disable=too-many-locals

from apps2compose.core.constants import SHARED_CAPABILITY_CONTAINER
from apps2compose.core.errors import CompileError, ManifestError
from apps2compose.io.parsing import AppManifest, ServiceDef, load_manifest
from apps2compose.pacts.compiler import SpecCompiler
from apps2compose.pacts.helpers import ip_var_name
from apps2compose.pacts.types import CompileResult, PortMapElement

# Service keys copied verbatim into the compose service
_PASSTHROUGH_KEYS = ("command", "entrypoint", "user", "working_dir",
                     "stop_grace_period", "network_mode", "cap_add", "init")


def _port_key(app_id: str, container: str, implements: str | None) -> str:
    """Key under which a container's ports are filed in the port map."""
    if implements and container == SHARED_CAPABILITY_CONTAINER:
        return implements
    return app_id


def _container_ports(port_map: dict, app_id: str, container: str,
                     implements: str | None) -> list[PortMapElement]:
    return (port_map.get(_port_key(app_id, container, implements)) or {}).get(container) or []


def _required_protocols(svc: ServiceDef, host_port: int) -> list[tuple[str, int]]:
    """(protocol, container port) pairs a required host port was declared for."""
    return [(proto, ports[host_port]) for proto, ports in sorted(svc.required_ports.items())
            if host_port in ports]


def _web_port(svc: ServiceDef, elements: list[PortMapElement]) -> PortMapElement | None:
    """The element of the service's own web port (not one of its required ports)."""
    for element in elements:
        if not _required_protocols(svc, element.internal_port):
            return element
    return None


def _published_ports(svc: ServiceDef, elements: list[PortMapElement]) -> list[str]:
    ports = []
    for element in elements:
        protocols = _required_protocols(svc, element.internal_port)
        if not protocols:
            ports.append(f"{element.public_port}:{element.internal_port}")
            continue
        for proto, container_port in protocols:
            suffix = "/udp" if proto == "udp" else ""
            ports.append(f"{element.public_port}:{container_port}{suffix}")
    return ports


def _convert_mounts(mounts: dict) -> list[str]:
    """Turn app.yml mounts into compose bind mounts.

    ``data`` is relative to the app directory; any other key refers to a
    platform directory exported as ``<KEY>_DIR`` in the env file.
    """
    volumes = []
    for key, value in mounts.items():
        base = "./data" if key == "data" else f"${{{key.upper()}_DIR}}"
        if isinstance(value, str):
            volumes.append(f"{base}:{value}")
        elif isinstance(value, dict):
            for subdir, container_path in value.items():
                volumes.append(f"{base}/{subdir}:{container_path}")
    return volumes


def _environment(svc: ServiceDef) -> dict:
    """Service environment as a mapping; compose's ``KEY=value`` list form is accepted."""
    env = svc.raw.get("environment") or {}
    if isinstance(env, dict):
        return dict(env)
    if not isinstance(env, list):
        raise CompileError(f"service {svc.name}: environment must be a mapping or a list")
    result = {}
    for item in env:
        if not isinstance(item, str):
            raise CompileError(f"service {svc.name}: invalid environment entry {item!r}")
        key, sep, value = item.partition("=")
        # Bare KEY: no value
        result[key] = value if sep else None
    return result


def _missing_dependencies(metadata: dict, services: list[str]) -> list:
    """Dependencies not satisfied by the installed services.

    A dependency is an app id or a list of alternatives (any one suffices).
    """
    missing = []
    for dep in metadata.get("dependencies") or []:
        alternatives = dep if isinstance(dep, list) else [dep]
        if not any(alt in services for alt in alternatives):
            missing.append(dep)
    return missing


class ComposeCompiler(SpecCompiler):
    """Compile app.yml manifests to docker-compose specs."""
    name = "compose"
    priority = 1000

    def compile(self, app_id, stream, port_map, services, ip_map):
        try:
            manifest = load_manifest(stream)
        except ManifestError as exc:
            raise CompileError(str(exc)) from exc

        implements = manifest.implements
        compose_services = {}
        for svc_name, svc in manifest.services.items():
            compose_services[svc_name] = self._build_service(
                app_id, svc, manifest, port_map, ip_map)

        primary = manifest.primary_container
        primary_svc = manifest.services[primary]
        web = _web_port(primary_svc,
                        _container_ports(port_map, app_id, primary, implements))
        primary_ip = ip_map[ip_var_name(app_id, primary)]

        metadata = dict(manifest.metadata)
        metadata["id"] = app_id
        metadata["implements"] = implements
        metadata["port"] = web.public_port if web else None
        missing = _missing_dependencies(manifest.metadata, services)
        metadata["compatible"] = not missing
        metadata["missing_dependencies"] = missing

        tor_entries = ""
        i2p_entries = ""
        caddy_entries = []
        if web is not None:
            tor_entries = (f"# {app_id} Hidden Service\n"
                           f"HiddenServiceDir /var/lib/tor/app-{app_id}\n"
                           f"HiddenServicePort 80 {primary_ip}:{web.internal_port}\n")
            i2p_entries = (f"[app-{app_id}]\n"
                           f"host = {primary_ip}\n"
                           f"port = {web.internal_port}\n"
                           f"keys = app-{app_id}.dat\n")
            caddy_entries.append({
                "app": app_id,
                "container": primary,
                "upstream": f"{primary_ip}:{web.internal_port}",
                "public_port": web.public_port,
                "path": metadata.get("path") or "/",
            })

        return CompileResult(
            spec={"services": compose_services},
            metadata=metadata,
            tor_entries=tor_entries,
            i2p_entries=i2p_entries,
            caddy_entries=caddy_entries,
        )

    @staticmethod
    def _build_service(app_id: str, svc: ServiceDef, manifest: AppManifest,
                       port_map: dict, ip_map: dict[str, str]) -> dict:
        """Build a compose service dict from one app.yml service."""
        ip_var = ip_var_name(app_id, svc.name)
        if ip_var not in ip_map:
            raise CompileError(f"no IP address assigned to {svc.name} ({ip_var})")
        if not svc.image:
            raise CompileError(f"service {svc.name} has no image")

        result = {
            "image": svc.image,
            "restart": "on-failure",
            "container_name": f"{app_id}_{svc.name}_1",
        }
        for key in _PASSTHROUGH_KEYS:
            if key in svc.raw:
                result[key] = svc.raw[key]

        env = _environment(svc)
        elements = _container_ports(port_map, app_id, svc.name, manifest.implements)
        web = _web_port(svc, elements)
        if web is not None and web.dynamic:
            # The app has to listen wherever the allocator put it
            env.setdefault("PORT", str(web.internal_port))
        if env:
            result["environment"] = {k: str(v) if v is not None else "" for k, v in env.items()}

        ports = _published_ports(svc, elements)
        if ports and svc.raw.get("network_mode") != "host":
            result["ports"] = ports

        volumes = _convert_mounts(svc.mounts)
        if volumes:
            result["volumes"] = volumes

        depends_on = svc.raw.get("depends_on")
        if depends_on:
            result["depends_on"] = list(depends_on)

        if svc.raw.get("network_mode") != "host":
            result["networks"] = {"default": {"ipv4_address": f"${{{ip_var}}}"}}
        return result
