"""
Project-wide extraction settings stored in the OpenSearch settings index.

A single settings document holds the custom instructions and categories that
shape fact extraction for every pro-tier write.
"""

from datetime import datetime
from typing import Any, Dict, List

from ..models.core import ProjectSettings
from ..utils.logging_config import get_logger
from ..utils.opensearch_client import OpenSearchClient, OpenSearchError
from .errors import ValidationError
from .tier_policy import AddOptions

logger = get_logger(__name__)

SETTINGS_ID = 'project'


class ProjectSettingsError(Exception):
    """Custom exception for project settings errors."""
    pass


def normalize_categories(categories: Any) -> Dict[str, str]:
    """Merge a list of {category_name: description} objects into one mapping.

    Raises:
        ValidationError: If categories is not a non-empty list of string-to-string objects
    """
    if not isinstance(categories, list) or not categories:
        raise ValidationError('categories must be a non-empty array of objects')

    merged: Dict[str, str] = {}
    for category in categories:
        if not isinstance(category, dict) or not category:
            raise ValidationError('categories must be a non-empty array of objects')
        for name, description in category.items():
            if not isinstance(name, str) or not name.strip() or not isinstance(description, str):
                raise ValidationError(f'Invalid category entry: {name!r}')
            merged[name.strip()] = description
    return merged


class ProjectSettingsStore:
    """Reads and writes the project settings document."""

    def __init__(self, opensearch: OpenSearchClient):
        self.opensearch = opensearch

        try:
            self.opensearch.create_index_if_not_exists('settings')
        except OpenSearchError as e:
            logger.warning(f'Failed to create settings index: {e}')

    def get(self) -> ProjectSettings:
        """Current settings; empty settings when none were ever saved."""
        try:
            doc = self.opensearch.get_document(SETTINGS_ID, 'settings')
        except OpenSearchError as e:
            raise ProjectSettingsError(f'Settings lookup failed: {e}')
        return ProjectSettings.from_document(doc) if doc else ProjectSettings()

    def add_options(self) -> AddOptions:
        """Saved settings as a write-options layer; unsaved fields stay unset."""
        settings = self.get()
        return AddOptions(custom_instructions=settings.custom_instructions or None,
                          custom_categories=settings.custom_categories or None)

    def update_instructions(self, instructions: str) -> ProjectSettings:
        return self._save({'custom_instructions': instructions})

    def update_categories(self, categories: List[Dict[str, str]]) -> ProjectSettings:
        """Replace the custom categories with the given [{name: description}, ...] list."""
        return self._save({'custom_categories': normalize_categories(categories)})

    def _save(self, changes: Dict[str, Any]) -> ProjectSettings:
        changes = {**changes, 'updated_at': datetime.now().isoformat()}
        try:
            existing = self.opensearch.get_document(SETTINGS_ID, 'settings')
            if existing:
                saved = self.opensearch.update_document(SETTINGS_ID, changes, 'settings')
                document = {**existing, **changes}
            else:
                document = {'id': SETTINGS_ID, **changes}
                saved = self.opensearch.index_document(document, 'settings')
        except OpenSearchError as e:
            raise ProjectSettingsError(f'Settings update failed: {e}')

        if not saved:
            raise ProjectSettingsError('Settings update was not stored')
        logger.info(f'Updated project settings: {", ".join(sorted(k for k in changes if k != "updated_at"))}')
        return ProjectSettings.from_document(document)
