"""Public contracts for compilers and extensions."""

from apps2compose.pacts.types import (
    CompileResult, PlatformConfig, PortCacheEntry, PortMapElement, PortPriority,
)
from apps2compose.pacts.compiler import SpecCompiler
from apps2compose.pacts.helpers import derive_entropy, env_name, ip_var_name, shared_subdir_var_name

__all__ = [
    "CompileResult",
    "PlatformConfig",
    "PortCacheEntry",
    "PortMapElement",
    "PortPriority",
    "SpecCompiler",
    "derive_entropy",
    "env_name",
    "ip_var_name",
    "shared_subdir_var_name",
]
