from __future__ import annotations

import ast

from ._utils import iter_source_files, matches_prefix, parse_imports, read_tree, relman_root

_LIBRARY_PACKAGES = ("core", "platform", "output", "release", "storage", "services")


def test_library_code_does_not_import_cli() -> None:
    root = relman_root()
    offenders: list[str] = []

    for file_path in iter_source_files():
        rel = file_path.relative_to(root)
        if rel.parts[0] not in _LIBRARY_PACKAGES:
            continue
        for item in parse_imports(file_path):
            if matches_prefix(item.module, "relman.cli") or matches_prefix(item.module, "typer"):
                offenders.append(f"{rel}:{item.line}: forbidden import '{item.module}'")

    assert not offenders, "library -> cli dependency violations:\n" + "\n".join(offenders)


def test_rich_is_only_used_by_the_console() -> None:
    root = relman_root()
    offenders = [
        f"{file_path.relative_to(root)}:{item.line}: direct rich import '{item.module}'"
        for file_path in iter_source_files()
        if str(file_path.relative_to(root)) != "output/console.py"
        for item in parse_imports(file_path)
        if matches_prefix(item.module, "rich")
    ]

    assert not offenders, "Direct rich usage policy violations:\n" + "\n".join(offenders)


def test_environment_is_read_only_at_the_cli_edge() -> None:
    root = relman_root()
    offenders: list[str] = []

    for file_path in iter_source_files():
        rel = file_path.relative_to(root)
        if rel.parts[0] not in _LIBRARY_PACKAGES:
            continue
        for node in ast.walk(read_tree(file_path)):
            if (
                isinstance(node, ast.Attribute)
                and node.attr in {"environ", "getenv"}
                and isinstance(node.value, ast.Name)
                and node.value.id == "os"
            ):
                offenders.append(f"{rel}:{node.lineno}: environment read")

    assert not offenders, "Environment access outside the CLI:\n" + "\n".join(offenders)
