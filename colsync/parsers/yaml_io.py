"""Read and write the YAML documents that make up a collection directory."""
from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from colsync.errors import FilesystemError, SchemaValidationError


class _CollectionDumper(yaml.SafeDumper):
    """Block-style dumper: sequences indented under their key, no anchors or aliases."""

    def ignore_aliases(self, data: Any) -> bool:
        return True

    def increase_indent(self, flow: bool = False, indentless: bool = False):
        return super().increase_indent(flow, False)


def dump_yaml(data: Any) -> str:
    return yaml.dump(
        data,
        Dumper=_CollectionDumper,
        indent=2,
        width=120,
        default_flow_style=False,
        sort_keys=False,
        allow_unicode=True,
    )


def load_yaml_mapping(file_path: Path, role: str = "YAML") -> dict[str, Any]:
    """Parse a YAML file and ensure the document is a mapping.

    An empty document yields an empty mapping. Syntax errors and non-mapping
    documents raise SchemaValidationError; unreadable files raise FilesystemError.
    """
    try:
        text = file_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise FilesystemError(f"Could not read {file_path}: {exc}") from exc

    try:
        parsed = yaml.safe_load(text) or {}
    except yaml.YAMLError as exc:
        raise SchemaValidationError(file_path, role, f"invalid YAML ({exc})") from exc
    if not isinstance(parsed, dict):
        raise SchemaValidationError(file_path, role, "expected a mapping at the top level")
    return parsed


def save_yaml_file(file_path: Path, data: Any) -> None:
    try:
        file_path.write_text(dump_yaml(data), encoding="utf-8")
    except OSError as exc:
        raise FilesystemError(f"Could not write {file_path}: {exc}") from exc
