"""
onto_config -- single public entrypoint for FSM template configuration.

Responsibility:
    Provides the ONLY way to obtain template configuration at runtime
    through ``get_active_config()``.  Returns a validated ``TemplatePack``.
    YAML loading is internal tooling and never exposed to callers.

Architecture position:
    Configuration -- sits above ``onto_kernel`` and below
    ``onto_services``.  The kernel MUST NEVER import from ``onto_config``;
    bridges in this package translate packs into kernel stores.

Invariants enforced:
    - Single entrypoint: runtime config flows through ``get_active_config()``.
    - Load-time validation: a pack must pass uniqueness, parent, guard
      grammar, fragment and resolution checks before it is returned.
    - Deterministic assembly: the same YAML always yields the same checksum.

Failure modes:
    - ``FileNotFoundError`` -- no matching configuration set.
    - ``AssemblyError`` -- a fragment could not be parsed.
    - ``ValueError`` -- validation failures.

Audit relevance:
    Every successful call emits an ``ONTO_CONFIG_TRACE`` log entry with the
    config id, version, checksum and template count, tying each transition
    back to the template configuration that governed it.
"""

from __future__ import annotations

import logging
from pathlib import Path

from onto_config.assembler import AssemblyError, assemble_from_directory
from onto_config.schema import EngineSettings, TemplateDef, TemplatePack
from onto_config.validator import ConfigValidationResult, validate_configuration

_logger = logging.getLogger("onto_kernel.config")

_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"
_DEFAULT_CONFIG_ID = "default"

__all__ = [
    "AssemblyError",
    "ConfigValidationResult",
    "EngineSettings",
    "TemplateDef",
    "TemplatePack",
    "get_active_config",
    "validate_configuration",
]


def get_active_config(
    config_dir: Path | str | None = None,
    config_id: str | None = None,
) -> TemplatePack:
    """The ONLY public configuration entrypoint.

    Guarantees:
        - The returned ``TemplatePack`` has passed ``validate_configuration``.
        - An ``ONTO_CONFIG_TRACE`` log entry is emitted on every successful
          call.

    Non-goals:
        - Does NOT cache packs across calls; callers hold the pack (and the
          engine built from it) for as long as they need it.

    Args:
        config_dir: A configuration set directory (containing
            ``engine.yaml``) or a directory of sets.  Defaults to
            onto_config/sets/.
        config_id: Set to pick from a directory of sets.  Defaults to the
            only set present, else ``"default"``.

    Raises:
        FileNotFoundError: If no matching configuration set is found.
        AssemblyError: If a fragment cannot be parsed.
        ValueError: If validation fails.
    """
    sets_dir = Path(config_dir) if config_dir is not None else _DEFAULT_CONFIG_DIR
    fragment_dir = _find_config_set(sets_dir, config_id)

    pack = assemble_from_directory(fragment_dir)

    validation = validate_configuration(pack)
    if not validation.is_valid:
        raise ValueError(
            "Configuration validation failed:\n"
            + "\n".join(f"  - {e}" for e in validation.errors)
        )
    for warning in validation.warnings:
        _logger.warning("config_validation_warning", extra={"warning": warning})

    _logger.info(
        "ONTO_CONFIG_TRACE",
        extra={
            "trace_type": "ONTO_CONFIG_TRACE",
            "config_set_id": pack.config_id,
            "config_set_version": pack.version,
            "checksum": pack.checksum,
            "template_count": len(pack.templates),
            "warning_count": len(validation.warnings),
        },
    )

    return pack


def _find_config_set(sets_dir: Path, config_id: str | None) -> Path:
    """Locate the set directory to assemble.

    Raises:
        FileNotFoundError: If ``sets_dir`` does not exist or holds no
            matching set.
    """
    if not sets_dir.is_dir():
        raise FileNotFoundError(f"Configuration sets directory not found: {sets_dir}")

    if (sets_dir / "engine.yaml").exists():
        return sets_dir

    available = sorted(
        subdir for subdir in sets_dir.iterdir()
        if subdir.is_dir() and (subdir / "engine.yaml").exists()
    )

    if config_id is not None:
        for subdir in available:
            if subdir.name == config_id:
                return subdir
        raise FileNotFoundError(f"No configuration set '{config_id}' in {sets_dir}")

    if len(available) == 1:
        return available[0]
    for subdir in available:
        if subdir.name == _DEFAULT_CONFIG_ID:
            return subdir

    raise FileNotFoundError(
        f"No configuration set found in {sets_dir} "
        f"(available: {', '.join(p.name for p in available) or 'none'})"
    )
