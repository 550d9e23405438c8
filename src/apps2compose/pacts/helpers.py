"""Public helper functions available to compilers and extensions."""

import hashlib
import hmac

from apps2compose.core.constants import _ENV_NAME_RE


def env_name(*parts: str) -> str:
    """Build an APP_* env var name: uppercase, '-' and other separators become '_'."""
    return "_".join(["APP", *(_ENV_NAME_RE.sub("_", p.upper()) for p in parts)])


def ip_var_name(app_id: str, service: str) -> str:
    """Env var holding the IP address of one service, e.g. APP_BTC_RPC_EXPLORER_WEB_IP."""
    return env_name(app_id, service, "IP")


def shared_subdir_var_name(app_id: str) -> str:
    """Env var holding the shared-data subdirectory of an app."""
    return env_name(app_id, "SHARED_SUBDIR")


def derive_entropy(seed: str, identifier: str) -> str:
    """Derive a deterministic hex secret from the platform seed."""
    return hmac.new(seed.encode("utf-8"), identifier.encode("utf-8"),
                    hashlib.sha256).hexdigest()
