"""Rendering and writing of every generated artifact.

Nothing touches the disk until ``OutputSet.commit``; each file is then
replaced atomically so a failed run leaves the previous artifacts intact.
"""

import io
import json
import os
import sys
import tempfile
import urllib.error
import urllib.parse
import urllib.request
from pathlib import Path

import yaml
from dotenv import dotenv_values
from jinja2 import Environment, TemplateError

from apps2compose.core.constants import TOR_FILE_COUNT
from apps2compose.core.errors import CaddyfileError, StateFileError
from apps2compose.io.caddyfile import format_caddyfile, parse_caddyfile
from apps2compose.pacts.helpers import shared_subdir_var_name
from apps2compose.pacts.types import PortCacheEntry, PortMapElement


class OutputSet:
    """Files to write and files to delete, applied together at the end of a run."""

    def __init__(self):
        self.files: dict[Path, str] = {}
        self.deletions: list[Path] = []

    def write(self, path: Path, content: str) -> None:
        self.files[Path(path)] = content

    def delete(self, path: Path) -> None:
        self.deletions.append(Path(path))

    def commit(self) -> None:
        """Write staged files (temp file + rename) and remove stale ones."""
        for path, content in self.files.items():
            _atomic_write(path, content)
            print(f"Wrote {path}", file=sys.stderr)
        for path in self.deletions:
            if path.exists():
                try:
                    path.unlink()
                except OSError as exc:
                    raise StateFileError(f"cannot delete {path}: {exc}") from exc
                print(f"Removed {path}", file=sys.stderr)


def _atomic_write(path: Path, content: str) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            os.replace(tmp, path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise
    except OSError as exc:
        raise StateFileError(f"cannot write {path}: {exc}") from exc


# ---------------------------------------------------------------------------
# State files
# ---------------------------------------------------------------------------

def _dump_yaml(data) -> str:
    return yaml.safe_dump(data, default_flow_style=False, sort_keys=True)


def dump_port_map(port_map: dict[str, dict[str, list[PortMapElement]]]) -> str:
    """ports.yml: capability-or-app → container → [{internal_port, public_port, dynamic}]."""
    return _dump_yaml({
        key: {container: [e.to_dict() for e in elements]
              for container, elements in containers.items()}
        for key, containers in port_map.items()
    })


def dump_port_cache(claims: dict[int, PortCacheEntry]) -> str:
    """ports.cache.yml: public port → claim."""
    return _dump_yaml({port: entry.to_dict() for port, entry in claims.items()})


def dump_ip_map(ip_map: dict[str, str]) -> str:
    return _dump_yaml(dict(ip_map))


def dump_json(data) -> str:
    return json.dumps(data, indent=2) + "\n"


def dump_compose(spec: dict, app_id: str) -> str:
    """A per-app docker-compose.yml."""
    header = f"# Generated by apps2compose for {app_id} — do not edit manually\n"
    return header + yaml.safe_dump(spec, default_flow_style=False, sort_keys=False)


# ---------------------------------------------------------------------------
# Env file
# ---------------------------------------------------------------------------

def read_env_file(path: Path) -> str:
    """Current env file content ("" if it does not exist yet)."""
    if not path.exists():
        return ""
    try:
        return path.read_text(encoding="utf-8")
    except OSError as exc:
        raise StateFileError(f"cannot read {path}: {exc}") from exc


def merge_env(existing: str, ip_map: dict[str, str], data_dirs: dict[str, str]) -> str:
    """Append IP and shared-subdir variables whose exact line is not present yet."""
    lines = existing.splitlines()
    present = set(lines)
    additions = [f"{name}={ip}" for name, ip in sorted(ip_map.items())]
    additions += [f"{shared_subdir_var_name(app_id)}={subdir}"
                  for app_id, subdir in sorted(data_dirs.items())]
    for line in additions:
        if line not in present:
            lines.append(line)
            present.add(line)
    return "\n".join(lines) + "\n" if lines else ""


def env_vars(env_text: str) -> dict[str, str]:
    """Parse env file text the way compose reads it."""
    return {k: v for k, v in dotenv_values(stream=io.StringIO(env_text)).items()
            if v is not None}


# ---------------------------------------------------------------------------
# Tor / I2P
# ---------------------------------------------------------------------------

def split_round_robin(entries: list[str], count: int = TOR_FILE_COUNT) -> list[str]:
    """Spread entries over *count* buffers: entry i goes to buffer i mod count."""
    buffers: list[list[str]] = [[] for _ in range(count)]
    for i, entry in enumerate(entries):
        buffers[i % count].append(entry)
    return ["".join(b) for b in buffers]


def join_i2p_entries(entries: list[str]) -> str:
    return "\n".join(entries)


# ---------------------------------------------------------------------------
# Caddy
# ---------------------------------------------------------------------------

def render_caddyfile(template: str, caddy_entries: dict[str, list[dict]],
                     ip_map: dict[str, str], env: dict[str, str],
                     https_options=None) -> str:
    """Render Caddyfile.jinja and format the result.

    The template sees ``caddy_entries`` (app id → entries), ``ip_map``,
    every IP variable and env file variable by name, and ``https_options``
    when the user configured HTTPS.
    """
    context: dict = dict(ip_map)
    context["ip_map"] = ip_map
    context.update(env)
    context["caddy_entries"] = caddy_entries
    if https_options is not None:
        context["https_options"] = https_options
    try:
        rendered = Environment(keep_trailing_newline=True).from_string(template).render(context)
    except TemplateError as exc:
        raise StateFileError(f"error rendering Caddyfile template: {exc}") from exc
    return format_caddyfile(rendered)


def push_caddy_config(caddy_url: str, caddyfile: str, warnings: list[str],
                      timeout: float = 30) -> bool:
    """POST the adapted Caddyfile to <caddy_url>/load. Failures become warnings."""
    try:
        config = parse_caddyfile(caddyfile, warnings)
    except CaddyfileError as exc:
        warnings.append(f"Failed to update Caddy config: {exc}")
        return False
    url = urllib.parse.urljoin(caddy_url, "/load")
    request = urllib.request.Request(
        url, data=json.dumps(config).encode("utf-8"), method="POST",
        headers={"Content-Type": "application/json"})
    try:
        with urllib.request.urlopen(request, timeout=timeout) as resp:
            resp.read()
    except (urllib.error.URLError, OSError, ValueError) as exc:
        warnings.append(f"Failed to update Caddy config: {exc}")
        return False
    print(f"Loaded Caddy config into {url}", file=sys.stderr)
    return True
