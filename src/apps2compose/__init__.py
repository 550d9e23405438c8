"""apps2compose — convert an app-store catalog to compose specs, port/IP maps and a Caddyfile.

Re-exports the public API so extensions can import directly from here or
from apps2compose.pacts.
"""

from apps2compose.pacts.types import (
    CompileResult, PlatformConfig, PortCacheEntry, PortMapElement, PortPriority,
)
from apps2compose.pacts.compiler import SpecCompiler
from apps2compose.pacts.helpers import derive_entropy, ip_var_name
from apps2compose.core.errors import CompileError, IpSpaceExhausted, ManifestError, PipelineError

__all__ = [
    "CompileResult",
    "CompileError",
    "IpSpaceExhausted",
    "ManifestError",
    "PipelineError",
    "PlatformConfig",
    "PortCacheEntry",
    "PortMapElement",
    "PortPriority",
    "SpecCompiler",
    "derive_entropy",
    "ip_var_name",
]
