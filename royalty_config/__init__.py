"""
royalty_config -- single public entrypoint for engine configuration.

Responsibility:
    ``get_active_config()`` is the ONLY way to obtain configuration at
    runtime.  It loads YAML (the packaged defaults.yaml unless a path is
    given), applies optional overrides, validates, and returns a frozen
    ``RoyaltyEngineConfig``.

Architecture position:
    Configuration -- sits above ``royalty_kernel`` and below
    ``royalty_services``.  The kernel MUST NEVER import from
    ``royalty_config``; ``royalty_config.bridges`` translates a config
    into kernel inputs.

Failure modes:
    - ``FileNotFoundError`` -- config path does not exist.
    - ``ValueError`` -- validation failures (all problems listed).

Audit relevance:
    Every successful call emits a ``ROYALTY_CONFIG_TRACE`` record with the
    config id, version, scope and checksum, tying every run back to the
    configuration that governed it.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from royalty_config.loader import (
    load_yaml_file,
    merge_overrides,
    parse_config,
    validate_config,
)
from royalty_config.schema import RoyaltyEngineConfig

_logger = logging.getLogger("royalty_kernel.config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"


def get_active_config(
    config_path: Path | str | None = None,
    overrides: dict[str, Any] | None = None,
) -> RoyaltyEngineConfig:
    """The ONLY public configuration entrypoint.

    Args:
        config_path: YAML document to load; defaults to the packaged
            defaults.yaml.
        overrides: Nested mapping overlaid on the loaded document before
            parsing (tests, CLI flags).

    Raises:
        FileNotFoundError: If ``config_path`` does not exist.
        ValueError: If the configuration fails validation.
    """
    path = Path(config_path) if config_path is not None else DEFAULT_CONFIG_PATH
    data = load_yaml_file(path)
    if overrides:
        data = merge_overrides(data, overrides)

    config = parse_config(data)

    errors = validate_config(config)
    if errors:
        raise ValueError(
            "Configuration validation failed:\n"
            + "\n".join(f"  - {e}" for e in errors)
        )

    _logger.info(
        "ROYALTY_CONFIG_TRACE",
        extra={
            "trace_type": "ROYALTY_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "scope": config.scope,
            "source": str(path),
        },
    )

    return config


__all__ = ["get_active_config", "RoyaltyEngineConfig", "DEFAULT_CONFIG_PATH"]
