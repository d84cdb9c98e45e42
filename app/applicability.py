from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

UNIVERSAL_SENTINEL = "ALL"
FALLBACK_MARKER = "FALLBACK"
SENTINELS = frozenset({UNIVERSAL_SENTINEL, FALLBACK_MARKER})


@dataclass(frozen=True)
class ApplicableTypes:
    """Declared type set of one rule dimension (contract types or clause types).

    Either a list of concrete type codes, the universal sentinel alone, or the
    fallback marker alone.
    """

    values: tuple[str, ...]

    @classmethod
    def of(cls, values: "ApplicableTypes | Iterable[str] | str") -> "ApplicableTypes":
        if isinstance(values, ApplicableTypes):
            return values
        if isinstance(values, str):
            values = [values]
        out: list[str] = []
        for raw in values:
            item = str(raw).strip()
            if item and item not in out:
                out.append(item)
        return cls(values=tuple(out))

    @classmethod
    def universal(cls) -> "ApplicableTypes":
        return cls(values=(UNIVERSAL_SENTINEL,))

    @classmethod
    def fallback(cls) -> "ApplicableTypes":
        return cls(values=(FALLBACK_MARKER,))

    @property
    def is_universal(self) -> bool:
        return UNIVERSAL_SENTINEL in self.values

    @property
    def is_fallback(self) -> bool:
        return FALLBACK_MARKER in self.values

    @property
    def is_empty(self) -> bool:
        return not self.values

    @property
    def concrete_values(self) -> tuple[str, ...]:
        return tuple(x for x in self.values if x not in SENTINELS)

    def as_list(self) -> list[str]:
        return list(self.values)


def applies(declared: ApplicableTypes, concrete_type: str) -> bool:
    if declared.is_empty:
        return False
    if declared.is_universal or declared.is_fallback:
        return True
    return concrete_type in declared.values
