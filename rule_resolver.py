"""
rule_resolver.py – Classify a task title into a product category.

Leftmost match wins: every pattern of every category is searched and the
category whose keyword starts earliest in the title is returned.  Declared
priority order only breaks ties between matches at the same offset.
"""

from __future__ import annotations

from pathlib import Path

from catalog import Catalog
from errors import ConfigurationError, ErrorKind, ServiceError
from models import Category


class RuleResolver:
    """Pure lookups over an immutable :class:`Catalog`."""

    def __init__(self, catalog: Catalog) -> None:
        self._catalog = catalog

    def _earliest_match(self, title: str) -> tuple[Category, int] | None:
        best: tuple[Category, int] | None = None
        for category in self._catalog.priority_order:
            for pattern in self._catalog.patterns.get(category, ()):
                match = pattern.search(title)
                if match is None:
                    continue
                if best is None or match.start() < best[1]:
                    best = (category, match.start())
        return best

    def resolve(self, title: str) -> Category:
        """Return the category whose keyword appears first in *title*."""
        best = self._earliest_match(title)
        return best[0] if best else self._catalog.default_category

    def has_keyword_match(self, title: str) -> bool:
        return self._earliest_match(title) is not None

    def get_rule_file_path(self, category: Category) -> Path:
        try:
            return self._catalog.rule_files[category]
        except KeyError:
            raise ConfigurationError(
                f"No rule file configured for type: {category.value}"
            ) from None

    def read_rule_document(self, category: Category) -> str:
        """Load the rule document text for *category*."""
        path = self.get_rule_file_path(category)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            raise ServiceError(
                f"Rule file not found: {path}", ErrorKind.NOT_FOUND
            ) from None

    def get_types(self) -> list[Category]:
        return list(self._catalog.priority_order)

    def get_default_type(self) -> Category:
        return self._catalog.default_category
