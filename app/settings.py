from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass

from app.review_modes import ReviewMode


def _as_bool(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


def true_stack_required(environ: Mapping[str, str] | None = None) -> bool:
    env = os.environ if environ is None else environ
    return _as_bool(env.get("CRE_REQUIRE_TRUESTACK", "false"))


@dataclass
class EngineSettings:
    store_backend: str = "memory"
    postgres_dsn: str = ""
    default_mode: ReviewMode = ReviewMode.STANDARD
    default_clause_type: str = "general"
    require_true_stack: bool = False

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "EngineSettings":
        env = os.environ if environ is None else environ
        raw_mode = env.get("CRE_DEFAULT_REVIEW_MODE", "standard").strip() or "standard"
        try:
            default_mode = ReviewMode.from_code(raw_mode)
        except ValueError as exc:
            raise ValueError(f"CRE_DEFAULT_REVIEW_MODE is not a review mode: {raw_mode}") from exc
        return cls(
            store_backend=env.get("CRE_STORE_BACKEND", "memory").strip().lower() or "memory",
            postgres_dsn=env.get("POSTGRES_DSN", "").strip(),
            default_mode=default_mode,
            default_clause_type=env.get("CRE_DEFAULT_CLAUSE_TYPE", "general").strip() or "general",
            require_true_stack=true_stack_required(env),
        )
