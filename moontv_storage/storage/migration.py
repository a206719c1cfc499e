"""
One-time migration from the legacy ``admin:config`` blob to the normalized
per-field layout.

SiteConfig doubles as the completion marker: it is written after every other
field, so its presence means the whole copy finished. An interrupted run leaves
SiteConfig absent and the legacy blob in place, and the next call starts over.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .base import StorageBackend

log = logging.getLogger(__name__)


async def migrate_legacy_config(backend: StorageBackend) -> bool:
    """
    Copies the legacy admin config into the normalized layout.

    Returns:
        True if a migration was performed; False if there was no legacy blob
        or the normalized layout already exists.
    """
    legacy = await backend.get_admin_config()
    if legacy is None:
        return False

    if await backend.get_site_config() is not None:
        log.warning(
            "[yellow]Normalized site config already exists; leaving the legacy "
            "admin:config blob untouched.[/yellow]"
        )
        return False

    log.info("[cyan]Migrating legacy admin:config to the normalized layout...[/cyan]")

    await backend.set_source_config(legacy.source_config)
    log.debug(f"Migrated {len(legacy.source_config)} video sources.")

    await backend.set_custom_categories(legacy.custom_categories)
    log.debug(f"Migrated {len(legacy.custom_categories)} custom categories.")

    await backend.set_allow_register(legacy.user_config.allow_register)

    roles = bans = 0
    for user in legacy.user_config.users:
        if not user.role.is_default:
            await backend.set_user_role(user.username, user.role)
            roles += 1
        if user.banned:
            await backend.set_user_banned(user.username, True)
            bans += 1
    log.debug(f"Migrated {roles} user roles and {bans} bans.")

    # Completion marker; must stay the last normalized write.
    await backend.set_site_config(legacy.site_config)

    await backend.delete_admin_config()
    log.info("[green]✓ Legacy admin config migrated and removed.[/green]")
    return True
