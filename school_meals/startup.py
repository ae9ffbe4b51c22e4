from __future__ import annotations

import logging
from typing import Iterable, Tuple

from .config import Settings

logger = logging.getLogger(__name__)


def _collect_missing(settings: Settings, pairs: Iterable[Tuple[str, str]]) -> list[str]:
    missing: list[str] = []
    for attr, label in pairs:
        value = getattr(settings, attr, None)
        if value in (None, "", [], {}):
            missing.append(label)
    return missing


def validate_settings(settings: Settings) -> None:
    """Fail fast when the hosted backend endpoint, key or database are not configured."""
    environment = (settings.environment or "dev").lower()

    missing = _collect_missing(
        settings,
        [
            ("supabase_url", "SUPABASE_URL"),
            ("supabase_anon_key", "SUPABASE_ANON_KEY"),
            ("database_url", "DATABASE_URL"),
        ],
    )
    if missing:
        raise RuntimeError(
            f"Missing required configuration for environment '{environment}': {', '.join(sorted(missing))}"
        )

    if settings.history_default_limit > settings.history_max_limit:
        logger.warning(
            "HISTORY_DEFAULT_LIMIT (%s) exceeds HISTORY_MAX_LIMIT (%s); requests will be capped",
            settings.history_default_limit,
            settings.history_max_limit,
        )
