"""Byte codecs for column values that are not plain scalars.

Each codec exposes ``encode(value) -> bytes`` and ``decode(raw) -> value`` and raises
``CodecError`` on malformed input. Repositories use them; the engine never does.
"""

from __future__ import annotations

import json
from typing import Any, Protocol, TypeVar

from app.applicability import ApplicableTypes
from app.errors import CodecError
from app.models import Transition, TransitionKind

T = TypeVar("T")


class Codec(Protocol[T]):
    def encode(self, value: T) -> bytes: ...

    def decode(self, raw: bytes | str) -> T: ...


def _dumps(value: Any) -> bytes:
    return json.dumps(value, ensure_ascii=True, sort_keys=True, separators=(",", ":")).encode("utf-8")


def _loads(raw: bytes | str) -> Any:
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise CodecError(f"value is not utf-8: {exc}") from None
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise CodecError(f"value is not valid json: {exc.msg}") from None


class StringListCodec:
    def encode(self, value: list[str] | tuple[str, ...]) -> bytes:
        return _dumps([str(x) for x in value])

    def decode(self, raw: bytes | str) -> list[str]:
        data = _loads(raw)
        if not isinstance(data, list):
            raise CodecError("expected a json array of strings")
        out: list[str] = []
        for item in data:
            if not isinstance(item, str):
                raise CodecError("expected a json array of strings")
            if item.strip():
                out.append(item)
        return out


class ApplicableTypesCodec:
    """Stored as a json array, mirroring the text[] column of the rules table."""

    def __init__(self) -> None:
        self._strings = StringListCodec()

    def encode(self, value: ApplicableTypes) -> bytes:
        return self._strings.encode(value.as_list())

    def decode(self, raw: bytes | str) -> ApplicableTypes:
        return ApplicableTypes.of(self._strings.decode(raw))


class TransitionCodec:
    def encode(self, value: Transition) -> bytes:
        return _dumps({"kind": value.kind.value, "detail": value.detail})

    def decode(self, raw: bytes | str) -> Transition:
        data = _loads(raw)
        if not isinstance(data, dict):
            raise CodecError("expected a json object for transition")
        try:
            kind = TransitionKind(str(data.get("kind", "")))
        except ValueError:
            raise CodecError(f"unknown transition kind: {data.get('kind')!r}") from None
        detail = data.get("detail")
        if detail is not None and not isinstance(detail, str):
            raise CodecError("transition detail must be a string")
        return Transition(kind=kind, detail=detail)


applicable_types_codec = ApplicableTypesCodec()
string_list_codec = StringListCodec()
transition_codec = TransitionCodec()
