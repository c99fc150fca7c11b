"""Configuration of the memory server."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Mapping


class Algorithm(Enum):
    """Strategy used to pick a free hole for a new segment."""

    FIRST = "FIRST"
    BEST = "BEST"
    WORST = "WORST"


class ConfigError(ValueError):
    """The configuration is missing a value or holds an invalid one."""


def parse_algorithm(name: str) -> Algorithm:
    """Allocation algorithm named ``name``, ignoring case."""
    try:
        return Algorithm[name.strip().upper()]
    except KeyError:
        raise ConfigError(f"unknown allocation algorithm: {name!r}") from None


def _int_value(values: Mapping[str, object], key: str) -> int:
    try:
        raw = values[key]
    except KeyError:
        raise ConfigError(f"missing configuration key: {key}") from None
    try:
        return int(str(raw).strip())
    except ValueError:
        raise ConfigError(f"{key} must be an integer, got {raw!r}") from None


@dataclass(frozen=True)
class MemoryConfig:
    """Settings read from the memory configuration file."""

    port: int
    memory_size: int
    segment_zero_size: int
    segment_count: int
    memory_delay: int
    compaction_delay: int
    algorithm: Algorithm

    @classmethod
    def from_mapping(cls, values: Mapping[str, object]) -> MemoryConfig:
        """Build the configuration from its KEY=VALUE entries."""
        if "ALGORITMO_ASIGNACION" not in values:
            raise ConfigError("missing configuration key: ALGORITMO_ASIGNACION")
        return cls(
            port=_int_value(values, "PUERTO_ESCUCHA"),
            memory_size=_int_value(values, "TAM_MEMORIA"),
            segment_zero_size=_int_value(values, "TAM_SEGMENTO_0"),
            segment_count=_int_value(values, "CANT_SEGMENTOS"),
            memory_delay=_int_value(values, "RETARDO_MEMORIA"),
            compaction_delay=_int_value(values, "RETARDO_COMPACTACION"),
            algorithm=parse_algorithm(str(values["ALGORITMO_ASIGNACION"])),
        )


def read_config_file(path: str | Path) -> dict[str, str]:
    """Read KEY=VALUE lines, skipping blank lines and ``#`` comments."""
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"cannot read configuration file {path}: {exc}") from exc
    values: dict[str, str] = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        values[key.strip()] = value.strip()
    return values


def load_config(path: str | Path) -> MemoryConfig:
    """Read and validate the configuration file at ``path``."""
    return MemoryConfig.from_mapping(read_config_file(path))