"""
Configuration Validator (``onto_config.validator``).

Responsibility
--------------
Validates a ``TemplatePack`` before it is handed to the engine, so broken
templates fail at load time rather than as TEMPLATE_*/INVALID_FSM_DEFINITION
results on live requests.

Architecture position
---------------------
**Config layer** -- build-time validation.  Called by
``onto_config.get_active_config`` after assembly.  Uses the kernel's pure
resolver and definition checks through an in-memory store.

Invariants enforced
-------------------
* Template ids and ``(type_key, scope)`` pairs are unique.
* Every ``parent_id`` names a template in the pack.
* Every guard expression parses under the restricted grammar.
* Every FSM fragment is structurally well-formed and
  declares each transition id at most once.
* Every concrete template resolves: no cycle, depth within
  ``max_inheritance_depth``, merged definition valid.

Failure modes
-------------
* Validation errors (``ConfigValidationResult.errors``)  -> the pack MUST
  NOT be used.
* Validation warnings  -> usable, but should be reviewed (multiple initial
  states, unknown action names, unknown guard path roots, abstract
  templates that do not resolve on their own).
"""

from __future__ import annotations

from dataclasses import dataclass, field

from onto_config.bridges import template_record_from_def
from onto_config.guard_ast import validate_guard_expression
from onto_config.schema import STANDARD_ACTION_NAMES, TemplateDef, TemplatePack
from onto_kernel.domain.template import TemplateRecord
from onto_kernel.exceptions import TemplateError
from onto_kernel.services.template_resolver import TemplateResolver
from onto_kernel.services.template_store import InMemoryTemplateStore


@dataclass
class ConfigValidationResult:
    """
    Result of configuration validation.

    Contract
    --------
    * ``is_valid`` returns ``True`` only when ``errors`` is empty.
    * Warnings do not block loading but should be reviewed.
    """

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)


def validate_configuration(pack: TemplatePack) -> ConfigValidationResult:
    """
    Validate a template pack.

    Postconditions:
        - Returns a ``ConfigValidationResult`` with errors and warnings.
        - A pack with errors MUST NOT be used.
    """
    result = ConfigValidationResult()

    _validate_uniqueness(pack, result)
    _validate_parents(pack, result)
    _validate_guard_expressions(pack, result)
    _validate_actions(pack, result)
    store = _validate_fragments(pack, result)
    if result.is_valid:
        _validate_resolution(pack, store, result)

    return result


def _validate_uniqueness(pack: TemplatePack, result: ConfigValidationResult) -> None:
    seen_ids: set[str] = set()
    seen_keys: set[tuple[str, str]] = set()
    for template in pack.templates:
        if template.id in seen_ids:
            result.add_error(f"Duplicate template id: {template.id}")
        seen_ids.add(template.id)
        key = (template.type_key, template.scope)
        if key in seen_keys:
            result.add_error(
                f"Duplicate template for type_key '{template.type_key}' "
                f"in scope '{template.scope}'"
            )
        seen_keys.add(key)


def _validate_parents(pack: TemplatePack, result: ConfigValidationResult) -> None:
    ids = {t.id for t in pack.templates}
    for template in pack.templates:
        if template.parent_id is not None and template.parent_id not in ids:
            result.add_error(
                f"Template '{template.id}' names unknown parent '{template.parent_id}'"
            )


def _transitions(template: TemplateDef) -> list[dict]:
    if not template.fsm:
        return []
    return [t for t in template.fsm.get("transitions") or () if isinstance(t, dict)]


def _validate_guard_expressions(pack: TemplatePack, result: ConfigValidationResult) -> None:
    """Validate all guard expressions against the restricted grammar."""
    for template in pack.templates:
        for transition in _transitions(template):
            expression = transition.get("guard")
            if not expression:
                continue
            if not isinstance(expression, str):
                result.add_error(
                    f"Template '{template.id}' guard must be a string, got {expression!r}"
                )
                continue
            for problem in validate_guard_expression(expression):
                msg = (
                    f"Template '{template.id}' guard: {problem.message} "
                    f"(expression: {expression})"
                )
                if problem.is_error:
                    result.add_error(msg)
                else:
                    result.add_warning(msg)


def _validate_actions(pack: TemplatePack, result: ConfigValidationResult) -> None:
    for template in pack.templates:
        for transition in _transitions(template):
            for action in transition.get("actions") or ():
                name = action if isinstance(action, str) else (
                    action.get("name") if isinstance(action, dict) else None
                )
                if name is not None and name not in STANDARD_ACTION_NAMES:
                    result.add_warning(
                        f"Template '{template.id}' uses action '{name}' "
                        f"with no standard handler"
                    )


def _validate_fragments(
    pack: TemplatePack, result: ConfigValidationResult,
) -> InMemoryTemplateStore:
    store = InMemoryTemplateStore()
    for template in pack.templates:
        try:
            record = template_record_from_def(template)
        except ValueError as exc:
            result.add_error(f"Template '{template.id}' FSM is malformed: {exc}")
            continue
        _validate_transition_ids(record, result)
        store.add(record)
    return store


def _validate_transition_ids(record: TemplateRecord, result: ConfigValidationResult) -> None:
    # The merge overlays by id, so a repeated id inside one fragment would
    # silently keep only the last entry.
    if record.fsm is None:
        return
    seen: set[str] = set()
    for transition in record.fsm.transitions:
        if transition.id in seen:
            result.add_error(
                f"Template '{record.id}' declares transition id '{transition.id}' "
                f"more than once"
            )
        seen.add(transition.id)


def _validate_resolution(
    pack: TemplatePack,
    store: InMemoryTemplateStore,
    result: ConfigValidationResult,
) -> None:
    resolver = TemplateResolver(store, max_depth=pack.settings.max_inheritance_depth)
    for template in pack.templates:
        if template.status != "active":
            continue
        try:
            resolved = resolver.resolve(template.type_key, template.scope)
        except TemplateError as exc:
            msg = f"Template '{template.id}' does not resolve: [{exc.code}] {exc}"
            if template.is_abstract:
                result.add_warning(msg)
            else:
                result.add_error(msg)
            continue
        if len(resolved.definition.initial_states) > 1:
            result.add_warning(
                f"Template '{template.id}' resolves to more than one initial state: "
                f"{', '.join(resolved.definition.initial_states)}"
            )