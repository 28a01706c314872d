"""Reading the memory module's configuration file."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

__all__ = ["ConfigError", "MemoryConfig", "parse_config", "load_config"]

DEFAULT_CONFIG_PATH = "memoria.config"


class ConfigError(Exception):
    """The configuration is missing, unreadable or malformed."""


@dataclass
class MemoryConfig:
    """Settings of the memory module."""

    listen_port: str
    filesystem_ip: str
    filesystem_port: str
    memory_size: int
    instructions_path: str
    response_delay: int
    scheme: str
    search_algorithm: str
    partitions: list[int] = field(default_factory=list)
    log_level: str = "INFO"


def _parse_entries(text: str) -> dict[str, str]:
    entries: dict[str, str] = {}
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        if not sep:
            raise ConfigError(f"line without '=': {raw_line!r}")
        entries[key.strip()] = value.strip()
    return entries


def _require(entries: dict[str, str], key: str) -> str:
    try:
        return entries[key]
    except KeyError:
        raise ConfigError(f"missing configuration key: {key}") from None


def _to_int(key: str, value: str) -> int:
    try:
        return int(value)
    except ValueError:
        raise ConfigError(f"{key} is not an integer: {value!r}") from None


def _to_int_array(key: str, value: str) -> list[int]:
    if not (value.startswith("[") and value.endswith("]")):
        raise ConfigError(f"{key} is not an array: {value!r}")
    inner = value[1:-1].strip()
    if not inner:
        return []
    return [_to_int(key, element.strip()) for element in inner.split(",")]


def parse_config(text: str) -> MemoryConfig:
    """Build a configuration from ``KEY=VALUE`` lines; ``#`` starts a comment."""
    entries = _parse_entries(text)
    partitions_text = entries.get("PARTICIONES")
    return MemoryConfig(
        listen_port=_require(entries, "PUERTO_ESCUCHA"),
        filesystem_ip=_require(entries, "IP_FILESYSTEM"),
        filesystem_port=_require(entries, "PUERTO_FILESYSTEM"),
        memory_size=_to_int("TAM_MEMORIA", _require(entries, "TAM_MEMORIA")),
        instructions_path=_require(entries, "PATH_INSTRUCCIONES"),
        response_delay=_to_int(
            "RETARDO_RESPUESTA", _require(entries, "RETARDO_RESPUESTA")
        ),
        scheme=_require(entries, "ESQUEMA"),
        search_algorithm=_require(entries, "ALGORITMO_BUSQUEDA"),
        partitions=(
            _to_int_array("PARTICIONES", partitions_text)
            if partitions_text is not None
            else []
        ),
        log_level=_require(entries, "LOG_LEVEL"),
    )


def load_config(path: str | Path = DEFAULT_CONFIG_PATH) -> MemoryConfig:
    """Read and parse the configuration file at ``path``."""
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"cannot read configuration file {path}") from exc
    return parse_config(text)