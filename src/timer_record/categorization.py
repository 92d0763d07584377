"""Rule-based categorization of window descriptors.

A rule sets up to three fields. ``app_identifier`` is compared for equality
(ignoring case). ``app_name_pattern`` and ``window_title_pattern`` accept three
spellings:

* plain text, matched as a case-insensitive substring;
* a glob containing ``*``, ``?`` or ``[``, matched against the whole value;
* ``/regex/``, searched case-insensitively.

A rule matches when every field it sets matches. Rules are tried by descending
priority, ties broken by ascending id, and the first match wins.
"""

from __future__ import annotations

import fnmatch
import logging
import re
from typing import Callable, Iterable, Optional, Sequence

from .models import CategorizationRule, WindowDescriptor

logger = logging.getLogger(__name__)

Predicate = Callable[[str], bool]

_GLOB_CHARS = frozenset("*?[")

_BROWSERS = r"/^(Google Chrome|Safari|Firefox|Arc|Brave|Brave Browser|Microsoft Edge|chrome|chromium|firefox|msedge\.exe|chrome\.exe|firefox\.exe|brave\.exe)$/"
_TERMINALS = r"/^(Terminal|iTerm|iTerm2|Warp|Hyper|Alacritty|kitty|gnome-terminal-server|konsole|xterm|wezterm-gui|WindowsTerminal\.exe|powershell\.exe|pwsh\.exe|cmd\.exe)$/"


def _default(category: str, priority: int, **fields: str) -> CategorizationRule:
    return CategorizationRule(category_name=category, priority=priority, **fields)


DEFAULT_RULES: tuple[CategorizationRule, ...] = (
    # Code review and debugging hints win over the generic app rules.
    _default("code-review", 15, app_name_pattern=_BROWSERS,
             window_title_pattern=r"/GitHub.*Pull Request|GitLab.*Merge Request|Bitbucket.*Pull Request/"),
    _default("debugging", 15, app_name_pattern=_TERMINALS,
             window_title_pattern=r"/\b(gdb|lldb|debug|debugger|pdb|byebug|binding\.pry)\b/"),
    _default("debugging", 15, app_name_pattern=_TERMINALS,
             window_title_pattern=r"/\bgit\s+(diff|log|blame|bisect)\b/"),
    _default("testing", 15, app_name_pattern=_TERMINALS,
             window_title_pattern=r"/\b(npm\s+test|jest|mocha|pytest|rspec|tox)\b/"),
    _default("research", 12, app_name_pattern=_BROWSERS,
             window_title_pattern=r"/Stack Overflow|MDN Web Docs|documentation|docs\.|readme/"),
    _default("code-review", 12, app_name_pattern=_BROWSERS,
             window_title_pattern=r"/Review.*changes|Reviewing|Code Review/"),
    _default("excel-modeling", 12, app_name_pattern=_BROWSERS,
             window_title_pattern=r"/Google Sheets|spreadsheet/"),
    _default("presentations", 12, app_name_pattern=_BROWSERS,
             window_title_pattern=r"/Google Slides|presentation/"),
    _default("financial-analysis", 12, app_name_pattern=_BROWSERS,
             window_title_pattern=r"/Bloomberg|Reuters|Yahoo Finance|MarketWatch|SEC\.gov|EDGAR/"),
    _default("email", 12, app_name_pattern=_BROWSERS,
             window_title_pattern=r"/Gmail|Outlook.*Mail|Yahoo Mail/"),
    _default("meetings", 12, app_name_pattern=_BROWSERS,
             window_title_pattern=r"/Google Meet|meet\.google\.com|Zoom Meeting/"),
    _default("entertainment", 12, app_name_pattern=_BROWSERS,
             window_title_pattern=r"/YouTube|Netflix|Twitch|Spotify/"),
    _default("social-media", 12, app_name_pattern=_BROWSERS,
             window_title_pattern=r"/Twitter|X\.com|Facebook|Instagram|Reddit|LinkedIn/"),
    # Editors and IDEs.
    _default("programming", 10, app_identifier="com.microsoft.VSCode"),
    _default("programming", 10, app_identifier="com.apple.dt.Xcode"),
    _default("programming", 10, app_identifier="dev.zed.Zed"),
    _default("programming", 10, app_identifier="com.sublimetext.4"),
    _default("programming", 10,
             app_name_pattern=r"/^(code|code\.exe|Code|Cursor|IntelliJ IDEA|idea64\.exe|WebStorm|PyCharm|pycharm64\.exe|PhpStorm|RubyMine|GoLand|CLion|Rider|DataGrip|sublime_text|devenv\.exe)$/"),
    _default("programming", 10, app_name_pattern=r"/\b(Atom|Vim|Neovim|nvim|Emacs|Nova)\b/"),
    # Office suites.
    _default("excel-modeling", 10, app_identifier="com.microsoft.Excel"),
    _default("excel-modeling", 10, app_identifier="com.apple.iWork.Numbers"),
    _default("excel-modeling", 10, app_name_pattern=r"/^(excel\.exe|libreoffice-calc|Microsoft Excel)$/"),
    _default("presentations", 10, app_identifier="com.microsoft.Powerpoint"),
    _default("presentations", 10, app_identifier="com.apple.iWork.Keynote"),
    _default("presentations", 10, app_name_pattern=r"/^(powerpnt\.exe|libreoffice-impress|Microsoft PowerPoint)$/"),
    _default("financial-analysis", 10, app_identifier="com.bloomberg.terminal"),
    # Communication.
    _default("communication", 10, app_identifier="com.tinyspeck.slackmacgap"),
    _default("communication", 10, app_identifier="com.microsoft.teams"),
    _default("communication", 10,
             app_name_pattern=r"/^(Slack|slack\.exe|Microsoft Teams|Teams|ms-teams\.exe|Discord|discord\.exe|Messages|WhatsApp|Telegram|Signal)$/"),
    _default("email", 10, app_identifier="com.apple.mail"),
    _default("email", 10, app_name_pattern=r"/^(Mail|Outlook|outlook\.exe|Spark|Airmail|Superhuman|thunderbird)$/"),
    _default("meetings", 10, app_identifier="us.zoom.xos"),
    _default("meetings", 10, app_name_pattern=r"/^(zoom\.us|zoom|Zoom\.exe|Google Meet|Webex|GoToMeeting|Skype)$/"),
    _default("meetings", 8, app_identifier="com.apple.iCal"),
    _default("meetings", 8, app_name_pattern=r"/^Calendar$/"),
    _default("research", 8, app_name_pattern=r"/^(Notion|Obsidian|Bear|Evernote|Apple Notes|Notes)$/"),
    _default("programming", 8, app_name_pattern=r"/^(Figma|Sketch|Adobe XD|Photoshop|Illustrator)$/"),
    # Plain terminals and browsers come last.
    _default("programming", 5, app_name_pattern=_TERMINALS),
    _default("browsing", 1, app_name_pattern=_BROWSERS),
)


def _never(_value: str) -> bool:
    return False


def compile_pattern(pattern: str) -> Predicate:
    """Turn one rule pattern into a predicate over a descriptor field.

    Malformed regular expressions yield a predicate that never matches.
    """
    if len(pattern) >= 2 and pattern.startswith("/") and pattern.endswith("/"):
        try:
            regex = re.compile(pattern[1:-1], re.IGNORECASE)
        except re.error as exc:
            logger.warning("Ignoring malformed rule pattern %r: %s", pattern, exc)
            return _never
        return lambda value: regex.search(value) is not None

    needle = pattern.casefold()
    if _GLOB_CHARS & set(pattern):
        regex = re.compile(fnmatch.translate(needle))
        return lambda value: regex.match(value.casefold()) is not None

    return lambda value: needle in value.casefold()


def _identifier_predicate(identifier: str) -> Predicate:
    expected = identifier.casefold()
    return lambda value: value.casefold() == expected


class CompiledRule:
    """A rule with its field predicates built once."""

    __slots__ = ("rule", "_checks")

    def __init__(self, rule: CategorizationRule) -> None:
        self.rule = rule
        checks: list[tuple[Callable[[WindowDescriptor], str], Predicate]] = []
        if rule.app_identifier:
            checks.append((_app_identifier, _identifier_predicate(rule.app_identifier)))
        if rule.app_name_pattern:
            checks.append((_app_name, compile_pattern(rule.app_name_pattern)))
        if rule.window_title_pattern:
            checks.append((_window_title, compile_pattern(rule.window_title_pattern)))
        self._checks = tuple(checks)

    def matches(self, descriptor: WindowDescriptor) -> bool:
        if not self._checks:
            return False
        return all(predicate(field(descriptor) or "") for field, predicate in self._checks)


def _app_identifier(descriptor: WindowDescriptor) -> str:
    return descriptor.app_identifier


def _app_name(descriptor: WindowDescriptor) -> str:
    return descriptor.app_name


def _window_title(descriptor: WindowDescriptor) -> str:
    return descriptor.window_title


def sort_rules(rules: Iterable[CategorizationRule]) -> list[CategorizationRule]:
    """Order rules by descending priority, then ascending id (unsaved rules last)."""
    indexed = list(enumerate(rules))
    indexed.sort(
        key=lambda item: (
            -item[1].priority,
            item[1].id is None,
            item[1].id if item[1].id is not None else 0,
            item[0],
        )
    )
    return [rule for _, rule in indexed]


class Categorizer:
    """Evaluate user rules, then the built-in defaults, against a descriptor."""

    def __init__(
        self,
        rules: Sequence[CategorizationRule] = (),
        *,
        defaults: Sequence[CategorizationRule] = DEFAULT_RULES,
        known_categories: Optional[Iterable[str]] = None,
    ) -> None:
        self._rules = [CompiledRule(rule) for rule in sort_rules(rules)]
        self._defaults = [CompiledRule(rule) for rule in sort_rules(defaults)]
        self._known = (
            {name.casefold() for name in known_categories}
            if known_categories is not None
            else None
        )

    @classmethod
    def from_store(cls, store, *, use_defaults: bool = True) -> "Categorizer":
        return cls(
            store.get_rules(),
            defaults=DEFAULT_RULES if use_defaults else (),
            known_categories=store.category_names(),
        )

    def categorize(self, descriptor: WindowDescriptor) -> Optional[str]:
        """Return the category name of the first matching rule, or ``None``."""
        for compiled in self._rules:
            if self._safe_match(compiled, descriptor):
                return compiled.rule.category_name
        for compiled in self._defaults:
            if self._known is not None and compiled.rule.category_name.casefold() not in self._known:
                continue
            if self._safe_match(compiled, descriptor):
                return compiled.rule.category_name
        return None

    @staticmethod
    def _safe_match(compiled: CompiledRule, descriptor: WindowDescriptor) -> bool:
        try:
            return compiled.matches(descriptor)
        except (TypeError, ValueError, re.error):
            logger.debug("Rule %s failed to evaluate; treating as no match", compiled.rule.id)
            return False


def categorize(
    descriptor: WindowDescriptor, rules: Sequence[CategorizationRule]
) -> Optional[str]:
    """Categorize against ``rules`` alone, without the built-in defaults."""
    return Categorizer(rules, defaults=()).categorize(descriptor)
