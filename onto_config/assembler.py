"""
Fragment assembler: composes a configuration set directory into one
``TemplatePack``.

Directory layout::

    sets/<config_id>/
        engine.yaml          # config_id, version, description, engine: {...}
        templates/*.yaml     # each holds a ``templates:`` list

Template files are read in sorted filename order, so the assembled pack
(and its checksum) is deterministic.
"""

from __future__ import annotations

from dataclasses import asdict
from pathlib import Path

from onto_config.loader import (
    compute_checksum,
    load_yaml_file,
    parse_engine_settings,
    parse_template_file,
)
from onto_config.schema import TemplateDef, TemplatePack
from onto_kernel.exceptions import OntoKernelError


class AssemblyError(OntoKernelError):
    """Error during fragment assembly.

    Contract:
        Raised when a set directory is missing, ``engine.yaml`` is absent,
        or a fragment cannot be parsed.  Wraps the underlying parse error.

    Non-goals:
        Does not enumerate every field-level error; the first fatal issue
        aborts assembly.
    """

    code: str = "ASSEMBLY_FAILED"

    def __init__(self, fragment: Path, reason: str):
        self.fragment = str(fragment)
        self.reason = reason
        super().__init__(f"Cannot assemble {fragment}: {reason}")


def assemble_from_directory(fragment_dir: Path) -> TemplatePack:
    """Compose a set directory into one ``TemplatePack``.

    Postconditions:
        - Returns a frozen ``TemplatePack`` with a deterministic SHA-256
          ``checksum`` over settings and templates.

    Raises:
        AssemblyError: If the directory or ``engine.yaml`` is missing, or a
            fragment fails to parse.
    """
    if not fragment_dir.is_dir():
        raise AssemblyError(fragment_dir, "not a directory")

    engine_file = fragment_dir / "engine.yaml"
    if not engine_file.exists():
        raise AssemblyError(fragment_dir, "engine.yaml not found")

    try:
        root = load_yaml_file(engine_file)
        settings = parse_engine_settings(root.get("engine") or {})
    except (ValueError, TypeError) as exc:
        raise AssemblyError(engine_file, str(exc)) from exc

    templates: list[TemplateDef] = []
    templates_dir = fragment_dir / "templates"
    if templates_dir.is_dir():
        for path in sorted(templates_dir.glob("*.yaml")):
            try:
                templates.extend(parse_template_file(path))
            except (KeyError, ValueError, TypeError) as exc:
                raise AssemblyError(path, f"{type(exc).__name__}: {exc}") from exc

    config_id = str(root.get("config_id") or fragment_dir.name)
    version = int(root.get("version", 1))

    # database_url comes from the environment/deployment, not the set content
    checksum_settings = asdict(settings)
    checksum_settings.pop("database_url")
    checksum = compute_checksum({
        "config_id": config_id,
        "version": version,
        "settings": checksum_settings,
        "templates": [asdict(t) for t in templates],
    })

    return TemplatePack(
        config_id=config_id,
        version=version,
        checksum=checksum,
        settings=settings,
        templates=tuple(templates),
        description=root.get("description", ""),
    )
