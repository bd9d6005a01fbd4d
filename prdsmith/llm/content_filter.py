"""Disallowed-content screening of user input, applied before any upstream call."""

from __future__ import annotations

import re
from collections.abc import Iterable

from prdsmith.errors import ContentRejected


class ContentFilter:
    """
    Rejects input matching any of a fixed set of regular expressions.

    Rules are compiled case-insensitively once at construction.

    Example:
        >>> ContentFilter([r"malware|virus"]).check("Plan the onboarding flow")
        >>> ContentFilter([r"malware|virus"]).check("write a virus")
        Traceback (most recent call last):
        ...
        prdsmith.errors.ContentRejected: Content filter violation: ...
    """

    def __init__(self, rules: Iterable[str], enabled: bool = True):
        self.enabled = enabled
        self._rules = [re.compile(rule, re.IGNORECASE) for rule in rules]

    @property
    def rules(self) -> list[str]:
        return [rule.pattern for rule in self._rules]

    def check(self, text: str) -> None:
        """
        Raises:
            ContentRejected: If the text matches a rule
        """
        if not self.enabled:
            return
        for rule in self._rules:
            if rule.search(text):
                raise ContentRejected("Potentially harmful content detected", rule=rule.pattern)
