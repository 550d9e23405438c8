"""Platform config, user settings, seed and previous-run state files."""

import json
from pathlib import Path

import yaml

from apps2compose.core.constants import CONFIG_FILE, SEED_FILE, USER_FILE
from apps2compose.core.errors import StateFileError
from apps2compose.pacts.types import PlatformConfig, PortCacheEntry


def load_config(root: Path) -> PlatformConfig:
    """Load apps2compose.yaml from the platform root or return defaults."""
    path = root / CONFIG_FILE
    if path.exists():
        try:
            with open(path, encoding="utf-8") as f:
                cfg = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as exc:
            raise StateFileError(f"cannot read {path}: {exc}") from exc
    else:
        cfg = {}
    defaults = PlatformConfig()
    cfg.setdefault("reserved_ports", sorted(defaults.reserved_ports))
    cfg.setdefault("ip_subnet", defaults.ip_subnet)
    cfg.setdefault("ip_first_suffix", defaults.ip_first_suffix)
    cfg.setdefault("ip_last_suffix", defaults.ip_last_suffix)
    cfg.setdefault("default_port", defaults.default_port)
    cfg.setdefault("always_installed", list(defaults.always_installed))
    return PlatformConfig(
        reserved_ports=frozenset(int(p) for p in cfg["reserved_ports"]),
        ip_subnet=str(cfg["ip_subnet"]),
        ip_first_suffix=int(cfg["ip_first_suffix"]),
        ip_last_suffix=int(cfg["ip_last_suffix"]),
        default_port=int(cfg["default_port"]),
        always_installed=tuple(cfg["always_installed"]),
    )


def load_user_settings(root: Path) -> tuple[list[str], dict | None]:
    """Return (installed apps, https options) from db/user.json.

    A missing or malformed file is not an error: the platform may not be set up yet.
    """
    path = root.joinpath(*USER_FILE)
    try:
        with open(path, encoding="utf-8") as f:
            user = json.load(f)
    except (OSError, json.JSONDecodeError):
        return [], None
    if not isinstance(user, dict):
        return [], None
    installed = user.get("installedApps") or []
    if not isinstance(installed, list):
        installed = []
    return [str(a) for a in installed], user.get("https")


def load_seed(root: Path) -> str | None:
    """Read the platform seed, or None if the platform is not set up yet."""
    path = root.joinpath(*SEED_FILE)
    if not path.exists():
        return None
    try:
        return path.read_text(encoding="utf-8")
    except OSError as exc:
        raise StateFileError(f"cannot read {path}: {exc}") from exc


def _load_yaml_state(path: Path) -> dict:
    if not path.exists():
        return {}
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise StateFileError(f"cannot read {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise StateFileError(f"{path}: expected a mapping")
    return data


def load_port_cache(path: Path) -> dict[int, PortCacheEntry]:
    """Load ports.cache.yml (public port → claim), empty on first run."""
    try:
        return {int(port): PortCacheEntry.from_dict(entry)
                for port, entry in _load_yaml_state(path).items()}
    except (KeyError, TypeError, ValueError) as exc:
        raise StateFileError(f"failed to load port map {path}: {exc}") from exc


def load_ip_map(path: Path) -> dict[str, str]:
    """Load ips.yml (env var name → address), empty on first run."""
    return {str(k): str(v) for k, v in _load_yaml_state(path).items()}
