"""
Export and import of the admin configuration, plus ConfigFile handling.

The export envelope is ``{"version": "1.0", "exportTime": ..., "data": {...}}``.
Imports merge into the current configuration instead of replacing it: only new
sources and categories are appended, and only the tuning fields of SiteConfig
are taken over.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError

from moontv_storage.exceptions import ConfigFileError, ImportFormatError
from moontv_storage.models import AdminConfig, CustomCategory, SiteConfig, SourceEntry

from .db_manager import DbManager

log = logging.getLogger(__name__)

EXPORT_VERSION = "1.0"

EXPORTED_SITE_FIELDS = (
    "SiteName",
    "Announcement",
    "SearchDownstreamMaxPage",
    "SiteInterfaceCacheTime",
    "DisableYellowFilter",
)

# SiteConfig fields an import may overwrite
IMPORTED_SITE_FIELDS = (
    "SearchDownstreamMaxPage",
    "SiteInterfaceCacheTime",
    "DisableYellowFilter",
)


def build_export(config: AdminConfig) -> dict[str, Any]:
    """Builds the export envelope for ``config``."""
    site = config.site_config.model_dump(mode="json", by_alias=True)
    return {
        "version": EXPORT_VERSION,
        "exportTime": datetime.now(timezone.utc)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z"),
        "data": {
            "SiteConfig": {field: site.get(field) for field in EXPORTED_SITE_FIELDS},
            "SourceConfig": [
                s.model_dump(mode="json", by_alias=True) for s in config.source_config
            ],
            "CustomCategories": [
                c.model_dump(mode="json", by_alias=True)
                for c in config.custom_categories
            ],
            "ConfigFile": config.config_file or "",
        },
    }


def merge_import(config: AdminConfig, payload: Any) -> AdminConfig:
    """
    Merges an export envelope into ``config`` and returns the merged copy.

    Raises:
        ImportFormatError: If the envelope lacks ``version`` or ``data``, or an
            imported entry is malformed.
    """
    if not isinstance(payload, dict) or not payload.get("version") or not payload.get(
        "data"
    ):
        raise ImportFormatError("Import data must contain 'version' and 'data'.")
    data = payload["data"]
    if not isinstance(data, dict):
        raise ImportFormatError("'data' must be an object.")

    merged = config.model_copy(deep=True)

    try:
        site_updates = data.get("SiteConfig")
        if isinstance(site_updates, dict):
            site = merged.site_config.model_dump(by_alias=True)
            for field in IMPORTED_SITE_FIELDS:
                if site_updates.get(field) is not None:
                    site[field] = site_updates[field]
            merged.site_config = SiteConfig.model_validate(site)

        sources = data.get("SourceConfig")
        if isinstance(sources, list):
            existing = {s.key for s in merged.source_config}
            for raw in sources:
                source = SourceEntry.model_validate(_with_import_defaults(raw))
                if source.key not in existing:
                    merged.source_config.append(source)
                    existing.add(source.key)

        categories = data.get("CustomCategories")
        if isinstance(categories, list):
            existing = {c.merge_key for c in merged.custom_categories}
            for raw in categories:
                category = CustomCategory.model_validate(_with_import_defaults(raw))
                if category.merge_key not in existing:
                    merged.custom_categories.append(category)
                    existing.add(category.merge_key)
    except ValidationError as e:
        raise ImportFormatError(f"Invalid entry in import data:\n{e}") from e

    config_file = data.get("ConfigFile")
    if config_file:
        if not isinstance(config_file, str):
            raise ImportFormatError("'ConfigFile' must be a string.")
        merged.site_config.config_file = config_file

    added_sources = len(merged.source_config) - len(config.source_config)
    added_categories = len(merged.custom_categories) - len(config.custom_categories)
    log.debug(
        f"Import merged {added_sources} new sources and "
        f"{added_categories} new categories."
    )
    return merged


def _with_import_defaults(raw: Any) -> Any:
    if not isinstance(raw, dict):
        return raw
    entry = dict(raw)
    if not entry.get("from"):
        entry["from"] = "custom"
    if entry.get("disabled") is None:
        entry["disabled"] = False
    return entry


def validate_config_file(text: Any) -> str:
    """
    Checks that a ConfigFile payload is a string holding valid JSON.

    Raises:
        ConfigFileError: If it is not.
    """
    if not isinstance(text, str):
        raise ConfigFileError("ConfigFile content must be a string.")
    try:
        json.loads(text)
    except ValueError as e:
        raise ConfigFileError(f"ConfigFile is not valid JSON: {e}") from e
    return text


class ConfigTransfer:
    """Reads and writes the admin configuration through a DbManager."""

    def __init__(self, db: DbManager):
        self.db = db

    async def load(self) -> AdminConfig:
        """
        Returns the current configuration: the normalized layout when present,
        otherwise defaults.

        A legacy blob is migrated first so that saving never leaves both
        layouts in the store. Backends without a normalized layout keep
        reading the blob.
        """
        config = await self.db.get_admin_config_from_separated()
        if config is None and await self.db.migrate_from_legacy():
            config = await self.db.get_admin_config_from_separated()
        if config is not None:
            return config
        config = await self.db.get_admin_config()
        if config is not None:
            log.debug("Loaded admin config from the legacy blob.")
            return config
        return AdminConfig()

    async def save(self, config: AdminConfig) -> None:
        await self.db.set_admin_config_separated(config)

    async def export_config(self) -> dict[str, Any]:
        return build_export(await self.load())

    async def import_config(self, payload: Any) -> AdminConfig:
        merged = merge_import(await self.load(), payload)
        await self.save(merged)
        log.info("[green]✓ Admin config imported.[/green]")
        return merged

    async def get_config_file(self) -> str:
        return (await self.load()).config_file or "{}"

    async def set_config_file(self, text: Any) -> None:
        validate_config_file(text)
        config = await self.load()
        config.site_config.config_file = text
        await self.save(config)
