"""Localization for Melodia's replies.

Usage:
    from music.i18n import t
    msg = t("nothing_playing")
    msg = t("queued", title="Never Gonna Give You Up", position=3)

The active locale comes from ``BOT_LOCALE`` (default Spanish).
"""
from __future__ import annotations

import json
import logging
import os
from pathlib import Path

log = logging.getLogger(__name__)

DEFAULT_LOCALE = "es"

_locales: dict[str, dict[str, str]] = {}
_LOCALE_DIR = Path(__file__).resolve().parent / "locales"
_active = os.getenv("BOT_LOCALE", DEFAULT_LOCALE)


def load_locales(directory: Path = _LOCALE_DIR) -> None:
    """Load every ``<lang>.json`` file from the locales directory."""
    _locales.clear()
    if not directory.is_dir():
        log.warning("Locales directory not found: %s", directory)
        return
    for path in directory.glob("*.json"):
        lang = path.stem
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            log.warning("Failed to load locale %s: %s", lang, exc)
            continue
        _locales[lang] = data
        log.info("Loaded locale: %s (%d keys)", lang, len(data))


def available_locales() -> list[str]:
    return sorted(_locales.keys())


def set_locale(locale: str) -> None:
    global _active
    if _locales and locale not in _locales:
        log.warning("Unknown locale %r, keeping %r", locale, _active)
        return
    _active = locale


def current_locale() -> str:
    return _active


def t(key: str, locale: str | None = None, **kwargs) -> str:
    """Translate a key.

    Falls back to the default locale, then to the raw key.
    Supports {variable} substitution via kwargs.
    """
    if not _locales:
        load_locales()
    strings = _locales.get(locale or _active) or {}
    template = strings.get(key)
    if template is None:
        template = _locales.get(DEFAULT_LOCALE, {}).get(key, key)
    try:
        return template.format(**kwargs) if kwargs else template
    except (KeyError, IndexError):
        return template
