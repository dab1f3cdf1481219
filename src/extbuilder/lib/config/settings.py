"""Operational config loader."""

from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import dataclass, fields
from pathlib import Path
from typing import cast

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "extbuilder.toml"


@dataclass(frozen=True, slots=True)
class ExtBuilderConfig:
    """Resolved operational configuration for extbuilder."""

    term_timeout_seconds: float = 5.0
    run_dir_root: Path | None = None
    log_verbosity: int = 0


_SECTION_KEY_MAP: dict[str, dict[str, str]] = {
    "timeouts": {
        "term_timeout_seconds": "term_timeout_seconds",
        "term_timeout": "term_timeout_seconds",
    },
    "run": {
        "dir_root": "run_dir_root",
        "run_dir_root": "run_dir_root",
    },
    "logging": {
        "verbosity": "log_verbosity",
    },
}

_TOP_LEVEL_KEY_MAP: dict[str, str] = {
    "term_timeout_seconds": "term_timeout_seconds",
    "run_dir_root": "run_dir_root",
    "log_verbosity": "log_verbosity",
}

_ENV_OVERRIDE_MAP: dict[str, str] = {
    "EXTBUILDER_TERM_TIMEOUT_SECONDS": "term_timeout_seconds",
    "EXTBUILDER_RUN_DIR_ROOT": "run_dir_root",
    "EXTBUILDER_LOG_VERBOSITY": "log_verbosity",
}


def _expected_type_name(field_name: str) -> str:
    if field_name == "log_verbosity":
        return "int"
    if field_name == "term_timeout_seconds":
        return "float"
    return "path"


def _check_non_negative(value: float, source: str) -> None:
    if value < 0:
        raise ValueError(f"Invalid value for '{source}': expected a value >= 0, got {value!r}.")


def _coerce_file_value(*, field_name: str, raw_value: object, source: str) -> object:
    expected = _expected_type_name(field_name)
    if expected == "int":
        if isinstance(raw_value, bool) or not isinstance(raw_value, int):
            raise ValueError(
                f"Invalid value for '{source}': expected int, got "
                f"{type(raw_value).__name__} ({raw_value!r})."
            )
        _check_non_negative(raw_value, source)
        return raw_value

    if expected == "float":
        if isinstance(raw_value, bool) or not isinstance(raw_value, int | float):
            raise ValueError(
                f"Invalid value for '{source}': expected float, got "
                f"{type(raw_value).__name__} ({raw_value!r})."
            )
        _check_non_negative(float(raw_value), source)
        return float(raw_value)

    if not isinstance(raw_value, str):
        raise ValueError(
            f"Invalid value for '{source}': expected str, got "
            f"{type(raw_value).__name__} ({raw_value!r})."
        )
    normalized = raw_value.strip()
    if not normalized:
        raise ValueError(f"Invalid value for '{source}': expected non-empty string.")
    return Path(normalized).expanduser()


def _coerce_env_value(*, field_name: str, raw_value: str, env_name: str) -> object:
    expected = _expected_type_name(field_name)
    if expected == "int":
        try:
            value = int(raw_value.strip())
        except ValueError as error:
            raise ValueError(
                f"Invalid environment override '{env_name}': expected int, got {raw_value!r}."
            ) from error
        _check_non_negative(value, env_name)
        return value

    if expected == "float":
        try:
            parsed = float(raw_value.strip())
        except ValueError as error:
            raise ValueError(
                f"Invalid environment override '{env_name}': expected float, got {raw_value!r}."
            ) from error
        _check_non_negative(parsed, env_name)
        return parsed

    normalized = raw_value.strip()
    if not normalized:
        raise ValueError(
            f"Invalid environment override '{env_name}': expected non-empty string."
        )
    return Path(normalized).expanduser()


def _default_values() -> dict[str, object]:
    defaults = ExtBuilderConfig()
    return {field.name: getattr(defaults, field.name) for field in fields(ExtBuilderConfig)}


def _apply_toml_payload(
    *,
    values: dict[str, object],
    payload: dict[str, object],
    path: Path,
) -> None:
    for key, raw_value in payload.items():
        section_map = _SECTION_KEY_MAP.get(key)
        if section_map is not None:
            if not isinstance(raw_value, dict):
                raise ValueError(f"Invalid value for '{key}' in '{path}': expected table.")
            for section_key, section_value in cast("dict[str, object]", raw_value).items():
                field_name = section_map.get(section_key)
                if field_name is None:
                    logger.warning(
                        "Ignoring unknown extbuilder config key '%s.%s'.",
                        key,
                        section_key,
                    )
                    continue
                values[field_name] = _coerce_file_value(
                    field_name=field_name,
                    raw_value=section_value,
                    source=f"{key}.{section_key}",
                )
            continue

        field_name = _TOP_LEVEL_KEY_MAP.get(key)
        if field_name is None:
            logger.warning("Ignoring unknown extbuilder config key '%s'.", key)
            continue
        values[field_name] = _coerce_file_value(
            field_name=field_name,
            raw_value=raw_value,
            source=key,
        )


def _apply_env_overrides(values: dict[str, object]) -> None:
    for env_name, field_name in _ENV_OVERRIDE_MAP.items():
        raw_value = os.getenv(env_name)
        if raw_value is None:
            continue
        values[field_name] = _coerce_env_value(
            field_name=field_name,
            raw_value=raw_value,
            env_name=env_name,
        )


def _build_config(values: dict[str, object]) -> ExtBuilderConfig:
    return ExtBuilderConfig(
        term_timeout_seconds=cast("float", values["term_timeout_seconds"]),
        run_dir_root=cast("Path | None", values["run_dir_root"]),
        log_verbosity=cast("int", values["log_verbosity"]),
    )


def load_config(path: Path | None = None) -> ExtBuilderConfig:
    """Load ``extbuilder.toml`` and apply environment overrides.

    Without an explicit ``path`` the file is looked up in the current
    directory; a missing file yields the defaults.
    """

    values = _default_values()
    config_path = path if path is not None else Path.cwd() / CONFIG_FILENAME
    if config_path.is_file():
        payload_obj = tomllib.loads(config_path.read_text(encoding="utf-8"))
        payload = cast("dict[str, object]", payload_obj)
        _apply_toml_payload(values=values, payload=payload, path=config_path)
    elif path is not None:
        raise FileNotFoundError(f"Config file not found: {config_path}")

    _apply_env_overrides(values)
    return _build_config(values)
