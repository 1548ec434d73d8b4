"""
catalog.py – Static classification + folder configuration.

Loaded once at process start from ``config/rules.config.json`` and
``config/folders.config.json`` and then passed by reference into the
resolvers.  Nothing re-reads the files afterwards.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping

from errors import ConfigurationError
from models import Category

logger = logging.getLogger("sprint-testgen")


@dataclass(frozen=True)
class Catalog:
    """Immutable view of every category's patterns, rule file and folder."""

    patterns: Mapping[Category, tuple[re.Pattern[str], ...]]
    priority_order: tuple[Category, ...]
    default_category: Category
    rule_files: Mapping[Category, Path]
    folder_ids: Mapping[Category, int]
    folder_names: Mapping[Category, str]

    @classmethod
    def from_dicts(
        cls,
        rules: dict[str, Any],
        folders: dict[str, Any],
        base_dir: Path | None = None,
    ) -> "Catalog":
        base = base_dir or Path.cwd()
        try:
            order = tuple(_category(c) for c in rules["priorityOrder"])
            default = _category(rules["defaultType"])
            raw_patterns: dict[str, list[str]] = rules["keywordPatterns"]
            raw_rule_files: dict[str, str] = rules["ruleFiles"]
            raw_ids: dict[str, int] = folders["folderMapping"]
            raw_names: dict[str, str] = folders.get("folderNames", {})
        except KeyError as exc:
            raise ConfigurationError(f"Missing configuration key: {exc}") from exc

        patterns: dict[Category, tuple[re.Pattern[str], ...]] = {}
        for name, exprs in raw_patterns.items():
            try:
                patterns[_category(name)] = tuple(
                    re.compile(expr, re.IGNORECASE) for expr in exprs
                )
            except re.error as exc:
                raise ConfigurationError(
                    f"Invalid keyword pattern for '{name}': {exc}"
                ) from exc

        rule_files = {
            _category(name): _resolve(base, rel) for name, rel in raw_rule_files.items()
        }
        folder_ids = {_category(name): int(fid) for name, fid in raw_ids.items()}
        folder_names = {_category(name): str(n) for name, n in raw_names.items()}

        for category in order:
            if category not in patterns:
                raise ConfigurationError(f"No keyword patterns configured for type: {category.value}")
            if category not in rule_files:
                raise ConfigurationError(f"No rule file configured for type: {category.value}")
            if category not in folder_ids:
                raise ConfigurationError(f"No folder ID configured for type: {category.value}")
        if default not in order:
            raise ConfigurationError(
                f"Default type '{default.value}' is not in the priority order"
            )

        return cls(
            patterns=MappingProxyType(patterns),
            priority_order=order,
            default_category=default,
            rule_files=MappingProxyType(rule_files),
            folder_ids=MappingProxyType(folder_ids),
            folder_names=MappingProxyType(folder_names),
        )

    @classmethod
    def load(
        cls,
        rules_path: str | Path,
        folders_path: str | Path,
        base_dir: Path | None = None,
    ) -> "Catalog":
        """Read both JSON documents and build the catalog."""
        rules = _read_json(Path(rules_path))
        folders = _read_json(Path(folders_path))
        catalog = cls.from_dicts(rules, folders, base_dir=base_dir)
        logger.debug(
            "Catalog loaded: %d categories, default=%s",
            len(catalog.priority_order),
            catalog.default_category.value,
        )
        return catalog


def _category(name: str) -> Category:
    try:
        return Category(name)
    except ValueError as exc:
        raise ConfigurationError(f"Unknown category in configuration: '{name}'") from exc


def _resolve(base: Path, rel: str) -> Path:
    path = Path(rel)
    return path if path.is_absolute() else (base / path).resolve()


def _read_json(path: Path) -> dict[str, Any]:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigurationError(f"Cannot read configuration file {path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Invalid JSON in configuration file {path}: {exc}") from exc
