"""Spec compiler base class — the contract extensions implement."""

from apps2compose.pacts.types import CompileResult


class SpecCompiler:
    """Base class for per-app spec compilers.

    A compiler turns one app.yml into a compose spec plus registry metadata,
    Tor/I2P registration text and Caddy entries. It is called exactly once
    per supported app, after every app's ports and IPs have been assigned.
    Failures should be raised as CompileError; any failure only drops that app.
    """
    name: str = ""
    priority: int = 100

    def compile(self, app_id: str, stream, port_map: dict, services: list[str],
                ip_map: dict[str, str]) -> CompileResult:
        """Compile the manifest read from *stream*.

        *port_map* is keyed by capability (for apps implementing one) or app id,
        then container name, with lists of PortMapElement.
        *services* lists the apps/services currently installed.
        *ip_map* maps APP_*_IP env var names to addresses.
        """
        raise NotImplementedError
