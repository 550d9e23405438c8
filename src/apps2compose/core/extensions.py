"""Loading spec compilers from an extensions directory."""

import importlib.util
import sys
from pathlib import Path

from apps2compose.core.compiler import ComposeCompiler
from apps2compose.pacts.compiler import SpecCompiler


def _is_public_module(path: Path) -> bool:
    return path.suffix == ".py" and path.is_file() and not path.name.startswith(("_", "."))


def _discover_extension_files(extensions_dir) -> list[Path]:
    """Modules directly in *extensions_dir* and one subdirectory level below it."""
    found = []
    for entry in sorted(Path(extensions_dir).iterdir()):
        if entry.name.startswith(("_", ".")):
            continue
        if entry.is_dir():
            found.extend(sub for sub in sorted(entry.iterdir()) if _is_public_module(sub))
        elif _is_public_module(entry):
            found.append(entry)
    return found


def _compiler_classes(module) -> list[type]:
    """SpecCompiler subclasses defined in *module* itself (not imported into it)."""
    return [obj for obj in vars(module).values()
            if isinstance(obj, type) and issubclass(obj, SpecCompiler)
            and obj is not SpecCompiler and obj.__module__ == module.__name__]


def _priority(compiler: SpecCompiler) -> int:
    return getattr(compiler, "priority", 100)


def load_extensions(extensions_dir) -> list[SpecCompiler]:
    """Instantiate every compiler found in *extensions_dir*, best (lowest priority) first."""
    compilers = []
    for path in _discover_extension_files(extensions_dir):
        # Let an extension import sibling helper modules
        if str(path.parent) not in sys.path:
            sys.path.insert(0, str(path.parent))
        spec = importlib.util.spec_from_file_location(f"a2c_ext_{path.stem}", path)
        if spec is None or spec.loader is None:
            continue
        try:
            module = importlib.util.module_from_spec(spec)
            spec.loader.exec_module(module)
        except Exception as exc:  # pylint: disable=broad-except
            print(f"Warning: failed to load {path}: {exc}", file=sys.stderr)
            continue
        compilers.extend(cls() for cls in _compiler_classes(module))

    compilers.sort(key=_priority)
    if compilers:
        loaded = ", ".join(f"{type(c).__name__} ({c.name or '?'})" for c in compilers)
        print(f"Loaded extensions: {loaded}", file=sys.stderr)
    return compilers


def select_compiler(extensions_dir=None) -> SpecCompiler:
    """The compiler to use: the best extension, else the built-in ComposeCompiler."""
    builtin = ComposeCompiler()
    if not extensions_dir:
        return builtin
    return min(load_extensions(extensions_dir) + [builtin], key=_priority)
