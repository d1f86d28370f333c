"""
Configuration Loader (``onto_config.loader``).

Responsibility
--------------
Loads individual YAML fragment files and parses them into typed
``onto_config.schema`` dataclass instances.  This is **build/test tooling
only**; the single public entry point for runtime config is
``onto_config.get_active_config()``.

Architecture position
---------------------
**Config layer** -- consumed by ``onto_config.assembler``.  No dependency
on kernel services or the database.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` or ``KeyError`` with descriptive
  messages; no silent defaults for required fields.
* Legacy structured ``guards:`` lists are compiled into one expression
  joined with ``&&`` (and ANDed with any ``guard:`` expression).
* Actions authored with the legacy ``type:`` key are normalized to ``name:``.
* ``compute_checksum`` produces a deterministic SHA-256 hash.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError``.
* Unsupported legacy guard (``type_key_matches``) or malformed guard
  fields  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
import os
import re
from pathlib import Path
from typing import Any

import yaml

from onto_config.schema import EngineSettings, TemplateDef

DATABASE_URL_ENV = "ONTO_FSM_DATABASE_URL"

_PATH_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z0-9_]+)*$")
_KEY_RE = re.compile(r"^[A-Za-z0-9_]+$")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the top level is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping, got {type(data).__name__}")
    return data


# ---------------------------------------------------------------------------
# Engine settings
# ---------------------------------------------------------------------------


def parse_engine_settings(
    data: dict[str, Any],
    environ: dict[str, str] | None = None,
) -> EngineSettings:
    """Parse the ``engine:`` section; ``ONTO_FSM_DATABASE_URL`` wins over the file."""
    env = os.environ if environ is None else environ

    budget = float(data.get("action_budget_seconds", 30.0))
    if budget <= 0:
        raise ValueError("action_budget_seconds must be positive")

    depth = int(data.get("max_inheritance_depth", 10))
    if depth < 1:
        raise ValueError("max_inheritance_depth must be at least 1")

    allowed = data.get("allowed_entity_types")
    if allowed is not None:
        if not isinstance(allowed, list) or not all(isinstance(t, str) for t in allowed):
            raise ValueError("allowed_entity_types must be a list of strings")
        allowed = tuple(allowed)

    return EngineSettings(
        action_budget_seconds=budget,
        max_inheritance_depth=depth,
        allowed_entity_types=allowed,
        database_url=env.get(DATABASE_URL_ENV) or data.get("database_url"),
    )


# ---------------------------------------------------------------------------
# Legacy structured guards
# ---------------------------------------------------------------------------


def _quote(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


def _facet_key(guard: dict[str, Any], field_name: str = "key") -> str:
    key = guard.get(field_name)
    if not isinstance(key, str) or not _KEY_RE.match(key):
        raise ValueError(f"{guard.get('type')} guard needs a plain '{field_name}', got {key!r}")
    return key


def compile_legacy_guard(guard: dict[str, Any]) -> str:
    """Translate one structured guard into an expression."""
    guard_type = guard.get("type")

    if guard_type == "has_property":
        path = guard.get("path")
        if not isinstance(path, str) or not _PATH_RE.match(path):
            raise ValueError(f"has_property guard needs a dotted 'path', got {path!r}")
        return f"{path} != null"

    if guard_type == "has_facet":
        value = guard.get("value")
        if not isinstance(value, str):
            raise ValueError("has_facet guard needs a string 'value'")
        return f"facets.{_facet_key(guard)} == {_quote(value)}"

    if guard_type == "facet_in":
        key = _facet_key(guard)
        values = guard.get("values")
        if not isinstance(values, list) or not all(isinstance(v, str) for v in values):
            raise ValueError("facet_in guard needs a 'values' list of strings")
        if not values:
            return "false"
        return "(" + " || ".join(f"facets.{key} == {_quote(v)}" for v in values) + ")"

    if guard_type == "all_facets_set":
        keys = guard.get("keys")
        if not isinstance(keys, list):
            raise ValueError("all_facets_set guard needs a 'keys' list")
        if not keys:
            return "true"
        return " && ".join(
            f"facets.{_facet_key({'type': guard_type, 'key': k})} != null" for k in keys
        )

    if guard_type == "type_key_matches":
        raise ValueError(
            "type_key_matches guards are not supported; "
            "use an expression such as type_key == 'task.writer'"
        )

    raise ValueError(f"Unknown guard type: {guard_type!r}")


def compile_legacy_guards(guard: str | None, guards: list[dict[str, Any]] | None) -> str | None:
    """Combine an expression guard and a legacy list into one expression."""
    parts: list[str] = []
    if guard:
        parts.append(guard)
    for item in guards or ():
        if not isinstance(item, dict):
            raise ValueError(f"guard entry must be a mapping, got {item!r}")
        parts.append(compile_legacy_guard(item))
    if not parts:
        return None
    if len(parts) == 1:
        return parts[0]
    return " && ".join(f"({p})" for p in parts)


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------


def _normalize_action(raw: Any) -> Any:
    if isinstance(raw, dict) and "name" not in raw and "type" in raw:
        normalized = {k: v for k, v in raw.items() if k != "type"}
        return {"name": raw["type"], **normalized}
    return raw


def _normalize_transition(raw: dict[str, Any]) -> dict[str, Any]:
    transition = dict(raw)
    # YAML 1.1 reads a bare ``on:`` key as the boolean True.
    if True in transition and "on" not in transition:
        transition["on"] = transition.pop(True)
    if "event" in transition and "on" not in transition:
        transition["on"] = transition.pop("event")
    guards = transition.pop("guards", None)
    guard = compile_legacy_guards(transition.get("guard"), guards)
    if guard is not None:
        transition["guard"] = guard
    else:
        transition.pop("guard", None)
    if "actions" in transition:
        transition["actions"] = [_normalize_action(a) for a in transition["actions"] or ()]
    return transition


def parse_fsm_fragment(data: dict[str, Any] | None) -> dict[str, Any] | None:
    """Normalize an authored FSM fragment (still plain data)."""
    if data is None:
        return None
    if not isinstance(data, dict):
        raise ValueError(f"fsm must be a mapping, got {type(data).__name__}")
    fragment: dict[str, Any] = {
        "states": data.get("states") or [],
        "transitions": [],
    }
    for raw in data.get("transitions") or ():
        if not isinstance(raw, dict):
            raise ValueError(f"transition must be a mapping, got {raw!r}")
        fragment["transitions"].append(_normalize_transition(raw))
    if data.get("metadata"):
        fragment["metadata"] = data["metadata"]
    return fragment


def parse_template(data: dict[str, Any], source_file: str = "") -> TemplateDef:
    """Parse one template mapping.

    Raises:
        KeyError: if ``id``, ``type_key`` or ``scope`` is missing.
    """
    return TemplateDef(
        id=str(data["id"]),
        type_key=data["type_key"],
        scope=data["scope"],
        parent_id=data.get("parent_id") or data.get("parent"),
        name=data.get("name", ""),
        is_abstract=bool(data.get("is_abstract", False)),
        status=data.get("status", "active"),
        fsm=parse_fsm_fragment(data.get("fsm")),
        metadata=dict(data.get("metadata") or {}),
        source_file=source_file,
    )


def parse_template_file(path: Path) -> list[TemplateDef]:
    """Parse a ``templates/*.yaml`` fragment (``templates:`` list)."""
    data = load_yaml_file(path)
    raw_templates = data.get("templates") or []
    if not isinstance(raw_templates, list):
        raise ValueError(f"{path}: 'templates' must be a list")
    return [parse_template(raw, source_file=path.name) for raw in raw_templates]


# ---------------------------------------------------------------------------
# Checksum
# ---------------------------------------------------------------------------


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Postconditions:
        - Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
