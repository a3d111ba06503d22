"""Reading settings from the ``config.txt`` file of the source tree."""

from __future__ import annotations

from pathlib import Path

DEFAULT_CONFIG = Path("config.txt")


class ConfigError(Exception):
    """A configuration entry is malformed or ambiguous."""


def parse_config(text: str) -> list[tuple[str, str | None]]:
    """Parse config text into ``(key, value)`` pairs; bare keys have ``None``."""
    entries: list[tuple[str, str | None]] = []
    for raw_line in text.splitlines():
        line = raw_line.split("#", 1)[0].strip()
        if not line:
            continue
        key, sep, value = line.partition("=")
        if sep:
            entries.append((key.strip(), value.strip()))
        else:
            entries.append((line, None))
    return entries


def load_config(path: str | Path = DEFAULT_CONFIG) -> list[tuple[str, str | None]]:
    """Read and parse the config file at ``path``."""
    return parse_config(Path(path).read_text())


def _values_for(name: str, path: str | Path) -> list[str | None]:
    return [value for key, value in load_config(path) if key == name]


def get_bool(name: str, path: str | Path = DEFAULT_CONFIG) -> bool:
    """Return whether the flag ``name`` is present; flags must not carry a value."""
    values = _values_for(name, path)
    if not values:
        return False
    if any(value is not None for value in values):
        raise ConfigError(f"Boolean config `{name}` has a value")
    return True


def get_value(name: str, path: str | Path = DEFAULT_CONFIG) -> str | None:
    """Return the single value configured for ``name``, or ``None`` if absent."""
    values = _values_for(name, path)
    if not values:
        return None
    if len(values) > 1:
        raise ConfigError(f"Config `{name}` given multiple values: {values!r}")
    value = values[0]
    if value is None:
        raise ConfigError(f"Config `{name}` missing value")
    return value