"""Utilities to normalize application names and window titles."""

from __future__ import annotations

import re
from typing import Optional

_BROWSER_SUFFIXES: dict[str, tuple[str, ...]] = {
    "msedge.exe": (" - Personal - Microsoft Edge", " - Microsoft Edge"),
    "microsoft edge": (" - Microsoft Edge",),
    "chrome.exe": (" - Google Chrome",),
    "chrome": (" - Google Chrome",),
    "google chrome": (" - Google Chrome",),
    "chromium": (" - Chromium",),
    "firefox.exe": (" - Mozilla Firefox", " — Mozilla Firefox"),
    "firefox": (" - Mozilla Firefox", " — Mozilla Firefox"),
    "brave.exe": (" - Brave",),
    "brave browser": (" - Brave",),
    "opera.exe": (" - Opera",),
}

_EXTRA_TAB_COUNT_PATTERN = re.compile(r"\s+and\s+\d+\s+more\s+pages?", re.IGNORECASE)


def normalize_app_name(app_name: Optional[str]) -> str:
    """Trim whitespace; unknown names become the empty string."""
    if not app_name:
        return ""
    return app_name.strip()


def normalize_window_title(app_name: Optional[str], window_title: Optional[str]) -> str:
    """Remove common browser suffixes to surface tab names."""
    if not window_title:
        return ""
    normalized = window_title.strip()
    if not app_name:
        return normalized

    suffixes = _BROWSER_SUFFIXES.get(app_name.strip().lower())
    if suffixes:
        for suffix in suffixes:
            if normalized.endswith(suffix):
                normalized = normalized[: -len(suffix)].rstrip(" -")
                break

    normalized = _strip_tab_count(normalized)
    return re.sub(r"\s{2,}", " ", normalized).strip()


def _strip_tab_count(value: str) -> str:
    cleaned = _EXTRA_TAB_COUNT_PATTERN.sub("", value)
    return cleaned.strip(" -|")
