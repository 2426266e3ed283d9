# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Test that all third-party imports in entrygate/ are runtime deps.

The entrypoint is installed into a slim runtime image without test
extras, so an undeclared import only shows up when a container fails to
start.  Scan the package statically and check every import is stdlib,
internal, or provided by a declared dependency (transitively).
"""

import ast
import re
import sys
import tomllib
from importlib.metadata import packages_distributions, requires
from pathlib import Path


PROJECT_ROOT = Path(__file__).parent.parent
PACKAGE_DIR = PROJECT_ROOT / "entrygate"


def _collect_imports(source_dir: Path) -> set[str]:
    """Collect top-level module names imported by files in *source_dir*."""
    imports: set[str] = set()
    for py_file in source_dir.rglob("*.py"):
        tree = ast.parse(py_file.read_text(), filename=str(py_file))
        for node in ast.walk(tree):
            if isinstance(node, ast.Import):
                for alias in node.names:
                    imports.add(alias.name.split(".")[0])
            elif isinstance(node, ast.ImportFrom):
                if node.module and node.level == 0:
                    imports.add(node.module.split(".")[0])
    return imports


def _normalize(name: str) -> str:
    return re.sub(r"[-_.]+", "-", name).lower()


def _requirement_name(requirement: str) -> str:
    return _normalize(re.split(r"[<>=!~;\[\s]", requirement)[0].strip())


def _resolve_runtime_distributions() -> set[str]:
    """Normalized names of runtime deps and everything they require."""
    with open(PROJECT_ROOT / "pyproject.toml", "rb") as f:
        config = tomllib.load(f)

    resolved: set[str] = set()
    queue = [_requirement_name(d) for d in config["project"]["dependencies"]]
    while queue:
        dist = queue.pop()
        if dist in resolved:
            continue
        resolved.add(dist)
        for req in requires(dist) or []:
            if "extra ==" in req:
                continue
            name = _requirement_name(req)
            if name not in resolved:
                queue.append(name)
    return resolved


def test_imports_covered_by_runtime_deps() -> None:
    """All third-party imports in entrygate/ come from runtime deps."""
    stdlib = sys.stdlib_module_names | {"_thread", "_io"}
    third_party = {
        name
        for name in _collect_imports(PACKAGE_DIR)
        if name not in stdlib and name != "entrygate"
    }

    import_to_dist = packages_distributions()
    runtime_dists = _resolve_runtime_distributions()

    missing = []
    for imp in sorted(third_party):
        dists = import_to_dist.get(imp, [])
        if not dists:
            missing.append(f"{imp} (no distribution found)")
        elif not any(_normalize(d) in runtime_dists for d in dists):
            missing.append(f"{imp} (from {', '.join(dists)})")

    assert not missing, (
        "entrygate/ imports third-party packages not declared as runtime "
        "dependencies:\n"
        + "\n".join(f"  - {m}" for m in missing)
        + "\n\nAdd them to [project] dependencies in pyproject.toml."
    )


def test_declared_deps_are_imported() -> None:
    """Every runtime dependency is used by the package."""
    with open(PROJECT_ROOT / "pyproject.toml", "rb") as f:
        declared = {
            _requirement_name(d)
            for d in tomllib.load(f)["project"]["dependencies"]
        }

    import_to_dist = packages_distributions()
    used = {
        _normalize(dist)
        for imp in _collect_imports(PACKAGE_DIR)
        for dist in import_to_dist.get(imp, [])
    }

    assert declared <= used, f"Unused runtime deps: {declared - used}"
