"""Validate Python layer import boundaries for storyteller."""

from __future__ import annotations

import ast
import importlib.util
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
DEFAULT_SOURCE_ROOT = PROJECT_ROOT / "src" / "storyteller"
PACKAGE = "storyteller"
KNOWN_LAYERS = {"domain", "application", "adapters", "api", "cli"}
RULES: dict[str, set[str]] = {
    "domain": {"application", "adapters", "api", "cli"},
    "api": {"application", "adapters", "cli"},
    "application": {"adapters", "cli"},
}


def _layer_for_path(path: Path, source_root: Path) -> str | None:
    try:
        relative = path.relative_to(source_root)
    except ValueError:
        return None
    return relative.parts[0] if relative.parts else None


def _module_package(path: Path, source_root: Path) -> str:
    parts = [PACKAGE, *path.relative_to(source_root).with_suffix("").parts]
    return ".".join(parts[:-1])


def _layer_of(module_name: str) -> str | None:
    parts = module_name.split(".")
    if len(parts) < 2 or parts[0] != PACKAGE:
        return None
    return parts[1] if parts[1] in KNOWN_LAYERS else None


def _imported_modules(node: ast.Import | ast.ImportFrom, package: str) -> list[str]:
    if isinstance(node, ast.Import):
        return [alias.name for alias in node.names]
    base = node.module or ""
    if node.level:
        try:
            base = importlib.util.resolve_name("." * node.level + base, package)
        except ImportError:
            return []
    if base == PACKAGE:
        return [f"{PACKAGE}.{alias.name}" for alias in node.names]
    return [base]


def check_file(path: Path, source_root: Path = DEFAULT_SOURCE_ROOT) -> list[str]:
    layer = _layer_for_path(path, source_root)
    banned_layers = RULES.get(layer or "", set())
    if not banned_layers:
        return []

    tree = ast.parse(path.read_text(encoding="utf-8"), filename=str(path))
    package = _module_package(path, source_root)
    violations: list[str] = []
    for node in ast.walk(tree):
        if not isinstance(node, (ast.Import, ast.ImportFrom)):
            continue
        imported_layers = {_layer_of(module) for module in _imported_modules(node, package)}
        for imported_layer in sorted(layer_name for layer_name in imported_layers if layer_name):
            if imported_layer in banned_layers:
                violations.append(f"{path}: {layer} must not import {PACKAGE}.{imported_layer}")
    return violations


def check_import_boundaries(source_root: Path = DEFAULT_SOURCE_ROOT) -> list[str]:
    violations: list[str] = []
    for path in sorted(source_root.rglob("*.py")):
        violations.extend(check_file(path, source_root))
    return violations


def main() -> None:
    violations = check_import_boundaries()
    if violations:
        raise SystemExit("\n".join(violations))
    print("import boundary checks passed")


if __name__ == "__main__":
    main()
