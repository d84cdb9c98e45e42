from __future__ import annotations

from enum import Enum


class ReviewMode(Enum):
    """Review strictness levels, ordered from most relaxed to strictest."""

    RELAXED = 0
    STANDARD = 1
    STRICT = 2

    @property
    def ordinal(self) -> int:
        return int(self.value)

    @property
    def code(self) -> str:
        return self.name.lower()

    @classmethod
    def from_code(cls, raw: "ReviewMode | int | str") -> "ReviewMode":
        if isinstance(raw, ReviewMode):
            return raw
        if isinstance(raw, bool):
            raise ValueError(f"unknown review mode: {raw!r}")
        if isinstance(raw, int):
            for mode in cls:
                if mode.value == raw:
                    return mode
            raise ValueError(f"unknown review mode: {raw!r}")
        text = str(raw).strip()
        if text.isdigit():
            return cls.from_code(int(text))
        try:
            return cls[text.upper()]
        except KeyError:
            raise ValueError(f"unknown review mode: {raw!r}") from None


def ordinal(mode: ReviewMode) -> int:
    return mode.ordinal


def strictest() -> ReviewMode:
    return max(ReviewMode, key=ordinal)


def covers_at_least(rule_mode: ReviewMode, query_mode: ReviewMode) -> bool:
    """A rule authored for ``rule_mode`` still applies to requests at ``query_mode``
    or stricter, never to more relaxed requests."""
    return ordinal(rule_mode) <= ordinal(query_mode)
