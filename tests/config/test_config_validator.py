"""
Tests for pack validation: every check, plus the bundled default set.
"""

from onto_config.schema import EngineSettings, TemplateDef, TemplatePack
from onto_config.validator import validate_configuration

BASE_FSM = {
    "states": [{"key": "todo", "initial": True}, "done"],
    "transitions": [{"id": "complete", "from": "todo", "to": "done", "on": "complete"}],
}


def _pack(*templates, max_depth=10):
    return TemplatePack(
        config_id="test",
        version=1,
        checksum="0" * 64,
        settings=EngineSettings(max_inheritance_depth=max_depth),
        templates=tuple(templates),
    )


def _template(id, type_key, parent_id=None, fsm=BASE_FSM, **kwargs):
    return TemplateDef(id=id, type_key=type_key, scope="task", parent_id=parent_id, fsm=fsm, **kwargs)


def _with_transition(**transition):
    return {
        "states": BASE_FSM["states"],
        "transitions": [{"id": "complete", "from": "todo", "to": "done", "on": "complete", **transition}],
    }


def test_default_set_is_valid(default_pack):
    result = validate_configuration(default_pack)
    assert result.is_valid, result.errors


def test_minimal_pack_is_valid():
    result = validate_configuration(_pack(_template("tpl-a", "task.a")))
    assert result.is_valid
    assert result.warnings == []


def test_duplicate_ids_and_type_keys():
    result = validate_configuration(_pack(
        _template("tpl-a", "task.a"),
        _template("tpl-a", "task.b"),
        _template("tpl-c", "task.a"),
    ))
    assert "Duplicate template id: tpl-a" in result.errors
    assert any("Duplicate template for type_key 'task.a'" in e for e in result.errors)


def test_unknown_parent():
    result = validate_configuration(_pack(_template("tpl-a", "task.a", parent_id="tpl-ghost")))
    assert result.errors == ["Template 'tpl-a' names unknown parent 'tpl-ghost'"]


def test_unparseable_guard_is_an_error():
    result = validate_configuration(_pack(
        _template("tpl-a", "task.a", fsm=_with_transition(guard="props.x ==")),
    ))
    assert not result.is_valid
    assert "(expression: props.x ==)" in result.errors[0]


def test_unknown_actor_field_is_an_error():
    result = validate_configuration(_pack(
        _template("tpl-a", "task.a", fsm=_with_transition(guard="actor.email != null")),
    ))
    assert "Unknown actor field: actor.email" in result.errors[0]


def test_unknown_path_root_is_a_warning():
    result = validate_configuration(_pack(
        _template("tpl-a", "task.a", fsm=_with_transition(guard="owner.name != null")),
    ))
    assert result.is_valid
    assert "Unknown path root 'owner'" in result.warnings[0]


def test_non_standard_action_is_a_warning():
    result = validate_configuration(_pack(
        _template("tpl-a", "task.a", fsm=_with_transition(actions=["send_carrier_pigeon", "notify"])),
    ))
    assert result.is_valid
    assert result.warnings == [
        "Template 'tpl-a' uses action 'send_carrier_pigeon' with no standard handler",
    ]


def test_malformed_fragment():
    fsm = {"states": [{"label": "no key"}], "transitions": []}
    result = validate_configuration(_pack(_template("tpl-a", "task.a", fsm=fsm)))
    assert any("FSM is malformed" in e for e in result.errors)


def test_repeated_transition_id_in_child_fragment():
    child_fsm = {"transitions": [
        {"id": "complete", "from": "todo", "to": "done", "on": "complete"},
        {"id": "complete", "from": "todo", "to": "done", "on": "finish"},
    ]}
    pack = _pack(
        _template("tpl-base", "task.base"),
        _template("tpl-child", "task.child", parent_id="tpl-base", fsm=child_fsm),
    )
    result = validate_configuration(pack)
    assert result.errors == [
        "Template 'tpl-child' declares transition id 'complete' more than once",
    ]


def test_derived_transition_ids_count_as_repeats():
    fsm = {"states": BASE_FSM["states"], "transitions": [
        {"from": "todo", "to": "done", "on": "complete"},
        {"from": "todo", "to": "done", "on": "complete", "guard": "props.ready == true"},
    ]}
    result = validate_configuration(_pack(_template("tpl-a", "task.a", fsm=fsm)))
    assert "Template 'tpl-a' declares transition id 'todo:complete:done' more than once" in result.errors


def test_inheritance_cycle_is_an_error():
    result = validate_configuration(_pack(
        _template("tpl-a", "task.a", parent_id="tpl-b"),
        _template("tpl-b", "task.b", parent_id="tpl-a"),
    ))
    assert not result.is_valid
    assert any("[CYCLIC_TEMPLATE]" in e for e in result.errors)


def test_chain_deeper_than_limit():
    result = validate_configuration(_pack(
        _template("tpl-a", "task.a"),
        _template("tpl-b", "task.b", parent_id="tpl-a", fsm=None),
        _template("tpl-c", "task.c", parent_id="tpl-b", fsm=None),
        max_depth=2,
    ))
    assert any("[TEMPLATE_DEPTH_EXCEEDED]" in e for e in result.errors)


def test_abstract_template_without_fsm_only_warns():
    result = validate_configuration(_pack(
        _template("tpl-a", "task.a", fsm=None, is_abstract=True),
    ))
    assert result.is_valid
    assert any("[INVALID_FSM_DEFINITION]" in w for w in result.warnings)


def test_transition_to_unknown_state_is_an_error():
    fsm = {
        "states": ["todo"],
        "transitions": [{"id": "complete", "from": "todo", "to": "done", "on": "complete"}],
    }
    result = validate_configuration(_pack(_template("tpl-a", "task.a", fsm=fsm)))
    assert any("does not resolve" in e for e in result.errors)


def test_inactive_templates_skip_resolution():
    result = validate_configuration(_pack(
        _template("tpl-a", "task.a", fsm=None, status="archived"),
    ))
    assert result.is_valid
