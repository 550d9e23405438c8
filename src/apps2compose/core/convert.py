"""Two-pass conversion of an app catalog.

Pass 1 reserves ports and IP addresses for every app, pass 2 hands each
supported app to the spec compiler with the final maps. Outputs are staged
and written in one go at the end of ``convert_dir``.
"""

import sys
from dataclasses import dataclass, field
from pathlib import Path

from apps2compose.core import constants as C
from apps2compose.core.compiler import ComposeCompiler
from apps2compose.core.errors import CompileError, ManifestError, StateFileError
from apps2compose.core.ips import IpAllocator
from apps2compose.core.ports import PortAllocator
from apps2compose.core.virtual import VirtualAppIndex
from apps2compose.io.config import (
    load_config, load_ip_map, load_port_cache, load_seed, load_user_settings,
)
from apps2compose.io.output import (
    OutputSet, dump_compose, dump_ip_map, dump_json, dump_port_cache, dump_port_map,
    env_vars, join_i2p_entries, merge_env, push_caddy_config, read_env_file,
    render_caddyfile, split_round_robin,
)
from apps2compose.io.parsing import AppManifest, list_app_dirs, load_manifest_file
from apps2compose.pacts.compiler import SpecCompiler
from apps2compose.pacts.helpers import derive_entropy, ip_var_name
from apps2compose.pacts.types import PlatformConfig, PortPriority


@dataclass
class ConvertContext:
    """Shared state of one run."""
    config: PlatformConfig
    ports: PortAllocator
    ips: IpAllocator
    services: list[str] = field(default_factory=list)
    seed: str | None = None
    https_options: dict | None = None
    data_dirs: dict[str, str] = field(default_factory=dict)
    skipped: set[str] = field(default_factory=set)
    unsupported: set[str] = field(default_factory=set)
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


@dataclass
class ConvertResult:
    """Everything pass 2 collected for the artifact writer."""
    specs: dict[str, dict] = field(default_factory=dict)
    stale: list[str] = field(default_factory=list)
    registry: list[dict] = field(default_factory=list)
    virtual_apps: VirtualAppIndex = field(default_factory=VirtualAppIndex)
    tor_entries: list[str] = field(default_factory=list)
    i2p_entries: list[str] = field(default_factory=list)
    caddy_entries: dict[str, list[dict]] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Pass 1: reservation
# ---------------------------------------------------------------------------

def _check_remap(app_id: str, container: str, port: int, implements: str | None,
                 ctx: ConvertContext) -> None:
    """Warn when a declared port ended up on another public port."""
    entry = ctx.ports.claims.get(port)
    if entry is None:
        ctx.warnings.append(f"App {app_id} (container {container}): port {port} "
                            f"is reserved, using another public port")
    elif not entry.owned_by(app_id, container) and not (
            implements and entry.implements == implements
            and container == C.SHARED_CAPABILITY_CONTAINER):
        ctx.warnings.append(f"App {app_id} (container {container}): port {port} "
                            f"is used by {entry.app}, using another public port")


def _mark_unsupported(app_id: str, container: str, port: int, proto: str,
                      ctx: ConvertContext) -> None:
    ctx.warnings.append(
        f"App {app_id} (container {container}) requires port {port} (on {proto}), "
        f"but this port is already in use!")
    ctx.unsupported.add(app_id)


def _record_shared_data(app_id: str, container: str, mounts: dict, primary: str,
                        ctx: ConvertContext) -> None:
    shared = mounts.get(C.SHARED_DATA_MOUNT)
    if shared is None:
        return
    if isinstance(shared, str):
        ctx.warnings.append(
            f"App {app_id} defines a string instead of a mapping as shared data mount")
        return
    if not isinstance(shared, dict) or len(shared) != 1:
        ctx.warnings.append(
            f"App {app_id} has multiple shared data mounts, this is not supported!")
        return
    if container != primary:
        ctx.warnings.append(
            f"App {app_id} mounts shared data in container {container}, "
            f"only {primary} may do that — ignored")
        return
    ctx.data_dirs[app_id.lower()] = str(next(iter(shared)))


def reserve_app(app_id: str, manifest: AppManifest, ctx: ConvertContext) -> None:
    """Assign IPs and reserve ports for every service of one app."""
    main = manifest.main_container
    primary = manifest.primary_container
    implements = manifest.implements
    for svc_name, svc in manifest.services.items():
        ctx.ips.assign(ip_var_name(app_id, svc_name))

        if svc.port is not None:
            priority = svc.port_priority or PortPriority.OPTIONAL
            if ctx.ports.reserve(app_id, svc_name, svc.port, priority, False, implements):
                _check_remap(app_id, svc_name, svc.port, implements, ctx)
            else:
                _mark_unsupported(app_id, svc_name, svc.port, "TCP", ctx)
        elif svc_name == main:
            # Optional ports can always be placed somewhere
            ctx.ports.reserve(app_id, svc_name, ctx.config.default_port,
                              PortPriority.OPTIONAL, True, implements)

        for proto in ("tcp", "udp"):
            for host_port in svc.required_ports.get(proto, {}):
                if ctx.ports.reserve(app_id, svc_name, host_port, PortPriority.REQUIRED,
                                     False, implements):
                    _check_remap(app_id, svc_name, host_port, implements, ctx)
                else:
                    _mark_unsupported(app_id, svc_name, host_port, proto.upper(), ctx)

        _record_shared_data(app_id, svc_name, svc.mounts, primary, ctx)


def reserve_resources(app_dirs: list[Path], ctx: ConvertContext) -> None:
    """Pass 1 over the catalog. Apps without a usable app.yml are skipped for good."""
    for app_dir in app_dirs:
        app_id = app_dir.name
        manifest_path = app_dir / C.MANIFEST_FILE
        try:
            manifest = load_manifest_file(manifest_path)
        except FileNotFoundError:
            ctx.errors.append(f"Missing {C.MANIFEST_FILE} for app {app_id}")
            ctx.skipped.add(app_id)
            continue
        except (OSError, ManifestError) as exc:
            ctx.errors.append(f"Error processing {C.MANIFEST_FILE} of app {app_id}: {exc}")
            ctx.skipped.add(app_id)
            continue
        reserve_app(app_id, manifest, ctx)


# ---------------------------------------------------------------------------
# Pass 2: compilation
# ---------------------------------------------------------------------------

def _resolve_default_password(app_id: str, metadata: dict, seed: str | None) -> None:
    if metadata.get("default_password") != C.APP_SEED_SENTINEL:
        return
    if seed is not None:
        metadata["default_password"] = derive_entropy(seed, f"app-{app_id}-seed")
    else:
        metadata["default_password"] = C.SEED_UNAVAILABLE_MESSAGE


def compile_apps(app_dirs: list[Path], port_map: dict, compiler: SpecCompiler,
                 ctx: ConvertContext) -> ConvertResult:
    """Pass 2: compile every supported app with the finalized port and IP maps."""
    result = ConvertResult()
    for app_dir in app_dirs:
        app_id = app_dir.name
        manifest_path = app_dir / C.MANIFEST_FILE
        if (app_id in ctx.skipped or app_id in ctx.unsupported
                or not manifest_path.exists()):
            result.stale.append(app_id)
            continue
        try:
            with open(manifest_path, encoding="utf-8") as stream:
                compiled = compiler.compile(app_id, stream, port_map,
                                            list(ctx.services), dict(ctx.ips.ip_map))
        except CompileError as exc:
            result.stale.append(app_id)
            ctx.errors.append(f"Error converting {C.MANIFEST_FILE} for app {app_id}: {exc}")
            continue
        except OSError as exc:
            raise StateFileError(f"cannot read {manifest_path}: {exc}") from exc
        except Exception as exc:  # pylint: disable=broad-except
            result.stale.append(app_id)
            ctx.errors.append(f"Compiler {type(compiler).__name__} failed for app "
                              f"{app_id}: {type(exc).__name__}: {exc}")
            continue

        metadata = compiled.metadata
        _resolve_default_password(app_id, metadata, ctx.seed)
        result.virtual_apps.add(metadata.get("implements"), app_id)
        result.registry.append(metadata)
        result.specs[app_id] = compiled.spec
        result.tor_entries.append(compiled.tor_entries + "\n")
        result.i2p_entries.append(compiled.i2p_entries + "\n")
        result.caddy_entries[app_id] = compiled.caddy_entries
    return result


# ---------------------------------------------------------------------------
# Whole run
# ---------------------------------------------------------------------------

def load_context(root: Path) -> ConvertContext:
    """Load config, user settings, seed and previous-run state."""
    apps_dir = root / C.APPS_DIR
    config = load_config(root)
    services, https_options = load_user_settings(root)
    for svc in config.always_installed:
        if svc not in services:
            services.append(svc)
    ctx = ConvertContext(
        config=config,
        ports=PortAllocator(config.reserved_ports,
                            load_port_cache(apps_dir / C.PORT_CACHE_FILE)),
        ips=IpAllocator(config.ip_subnet, config.ip_first_suffix, config.ip_last_suffix,
                        cache=load_ip_map(apps_dir / C.IP_MAP_FILE)),
        services=services,
        seed=load_seed(root),
        https_options=https_options,
    )
    if ctx.seed is None:
        ctx.warnings.append("Platform does not seem to be set up yet (no seed found)")
    return ctx


def stage_outputs(root: Path, app_dirs: list[Path], port_map: dict,
                  result: ConvertResult, ctx: ConvertContext) -> tuple[OutputSet, str]:
    """Render every artifact into an OutputSet; returns it with the Caddyfile text."""
    apps_dir = root / C.APPS_DIR
    out = OutputSet()
    out.write(apps_dir / C.PORT_MAP_FILE, dump_port_map(port_map))
    out.write(apps_dir / C.PORT_CACHE_FILE, dump_port_cache(ctx.ports.claims))
    out.write(apps_dir / C.IP_MAP_FILE, dump_ip_map(ctx.ips.ip_map))

    env_text = merge_env(read_env_file(root / C.ENV_FILE), ctx.ips.ip_map, ctx.data_dirs)
    out.write(root / C.ENV_FILE, env_text)

    dirs_by_id = {d.name: d for d in app_dirs}
    for app_id, spec in result.specs.items():
        out.write(dirs_by_id[app_id] / C.SPEC_FILE, dump_compose(spec, app_id))
    for app_id in result.stale:
        out.delete(dirs_by_id[app_id] / C.SPEC_FILE)

    out.write(apps_dir / C.REGISTRY_FILE, dump_json(result.registry))
    out.write(apps_dir / C.VIRTUAL_APPS_FILE, dump_json(result.virtual_apps.to_dict()))

    for parts, content in zip(C.TOR_FILES, split_round_robin(result.tor_entries)):
        out.write(root.joinpath(*parts), content)
    out.write(root.joinpath(*C.I2P_FILE), join_i2p_entries(result.i2p_entries))

    template_path = root.joinpath(*C.CADDY_TEMPLATE)
    try:
        template = template_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise StateFileError(f"cannot read {template_path}: {exc}") from exc
    caddyfile = render_caddyfile(template, result.caddy_entries, ctx.ips.ip_map,
                                 env_vars(env_text), ctx.https_options)
    out.write(root.joinpath(*C.CADDY_FILE), caddyfile)
    return out, caddyfile


def convert_dir(root, caddy_url: str | None = None,
                compiler: SpecCompiler | None = None) -> ConvertContext:
    """Convert the catalog under *root*/apps and write every artifact.

    Raises PipelineError on fatal problems, in which case nothing is written.
    Per-app problems end up in the returned context's errors/warnings.
    """
    root = Path(root)
    try:
        app_dirs = list_app_dirs(root / C.APPS_DIR)
    except OSError as exc:
        raise StateFileError(f"cannot read apps directory: {exc}") from exc

    ctx = load_context(root)
    reserve_resources(app_dirs, ctx)
    print(f"Reserved resources for {len(app_dirs) - len(ctx.skipped)} app(s), "
          f"{len(ctx.unsupported)} unsupported", file=sys.stderr)

    port_map = ctx.ports.port_map()
    result = compile_apps(app_dirs, port_map, compiler or ComposeCompiler(), ctx)

    out, caddyfile = stage_outputs(root, app_dirs, port_map, result, ctx)
    out.commit()

    if caddy_url:
        push_caddy_config(caddy_url, caddyfile, ctx.warnings)
    return ctx
