"""Reading and encoding compiler flag lists the way cargo does."""

from __future__ import annotations

import os
from collections.abc import Iterable, Mapping

_SEPARATOR = "\x1f"


def rustflags_from_env(kind: str, environ: Mapping[str, str] | None = None) -> list[str]:
    """Collect flags of ``kind`` (e.g. ``RUSTFLAGS``) from the environment.

    ``CARGO_ENCODED_<kind>`` takes precedence over the space separated ``<kind>``.
    """
    env = os.environ if environ is None else environ

    encoded = env.get(f"CARGO_ENCODED_{kind}")
    if encoded is not None:
        return encoded.split(_SEPARATOR) if encoded else []

    plain = env.get(kind)
    if plain is not None:
        return [part.strip() for part in plain.split(" ") if part.strip()]

    return []


def rustflags_to_env(kind: str, flags: Iterable[str]) -> dict[str, str]:
    """Return the environment entry that passes ``flags`` as encoded ``kind``."""
    return {f"CARGO_ENCODED_{kind}": _SEPARATOR.join(flags)}