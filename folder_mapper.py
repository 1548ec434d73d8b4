"""
folder_mapper.py – Maps categories onto BrowserStack destination folders.

Folder hierarchy under the project:
  ├─ Overall Analytics     (category == overall)
  │   └─ PA-12345 - <task title>      ← created per task, find-or-create
  ├─ Homepage Analytics
  ├─ Onsite Analytics
  ├─ Usage Analytics
  └─ Other
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from browserstack_client import BrowserStackClient
from catalog import Catalog
from errors import ConfigurationError
from models import Category, Folder

logger = logging.getLogger("sprint-testgen")


class FolderMapper:
    """Static category → folder lookups plus per-task subfolder resolution."""

    def __init__(self, catalog: Catalog) -> None:
        self._catalog = catalog

    def get_folder_id(self, category: Category) -> int:
        """Return the parent folder ID configured for *category*."""
        try:
            return self._catalog.folder_ids[category]
        except KeyError:
            raise ConfigurationError(
                f"No folder ID configured for type: {category.value}"
            ) from None

    def get_folder_name(self, category: Category) -> str:
        return self._catalog.folder_names.get(category, category.value)

    def get_all_mappings(self) -> dict[Category, int]:
        return dict(self._catalog.folder_ids)

    def get_type_by_folder_id(self, folder_id: int) -> Optional[Category]:
        """Reverse lookup; ``None`` when the ID is not configured."""
        for category, fid in self._catalog.folder_ids.items():
            if fid == folder_id:
                return category
        return None

    @staticmethod
    def subfolder_name(task_id: str, title: str) -> str:
        return f"{task_id} - {title}" if title else task_id

    def ensure_task_folder(
        self,
        client: BrowserStackClient,
        category: Category,
        task_id: str,
        title: str,
        retry: Optional[Callable[[Callable[[], Folder]], Folder]] = None,
    ) -> Folder:
        """Find or create the task's subfolder under the category folder.

        *retry* wraps the remote lookup-then-create so transient failures
        are retried; the lookup makes repeated calls idempotent.
        """
        parent_id = self.get_folder_id(category)
        name = self.subfolder_name(task_id, title)

        def _call() -> Folder:
            return client.find_or_create_subfolder(parent_id, name)

        folder = retry(_call) if retry else _call()
        logger.debug("Task %s → folder '%s' (id=%s)", task_id, folder.name, folder.id)
        return folder
