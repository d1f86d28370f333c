"""
Tests for YAML fragment parsing: settings, legacy guards and checksums.
"""

import pytest

from onto_config.assembler import AssemblyError, assemble_from_directory
from onto_config.loader import (
    DATABASE_URL_ENV,
    compile_legacy_guard,
    compile_legacy_guards,
    compute_checksum,
    load_yaml_file,
    parse_engine_settings,
    parse_fsm_fragment,
    parse_template_file,
)

ENGINE_YAML = """\
config_id: small
version: 3
engine:
  action_budget_seconds: 5
  max_inheritance_depth: 4
  allowed_entity_types: [task]
"""

TASK_YAML = """\
templates:
  - id: tpl-task-base
    type_key: task.base
    scope: task
    fsm:
      states:
        - key: todo
          initial: true
        - done
      transitions:
        - id: complete
          from: todo
          to: done
          on: complete
          actions:
            - type: notify
              message: Done
"""


@pytest.fixture
def set_dir(tmp_path):
    (tmp_path / "engine.yaml").write_text(ENGINE_YAML)
    (tmp_path / "templates").mkdir()
    (tmp_path / "templates" / "task.yaml").write_text(TASK_YAML)
    return tmp_path


class TestEngineSettings:

    def test_defaults(self):
        settings = parse_engine_settings({}, environ={})
        assert settings.action_budget_seconds == 30.0
        assert settings.max_inheritance_depth == 10
        assert settings.allowed_entity_types is None
        assert settings.database_url is None

    def test_environment_wins_over_file(self):
        settings = parse_engine_settings(
            {"database_url": "sqlite:///file.db"},
            environ={DATABASE_URL_ENV: "postgresql://fsm@db/onto"},
        )
        assert settings.database_url == "postgresql://fsm@db/onto"

    @pytest.mark.parametrize("data", [
        {"action_budget_seconds": 0},
        {"max_inheritance_depth": 0},
        {"allowed_entity_types": "task"},
        {"allowed_entity_types": ["task", 1]},
    ])
    def test_rejects_bad_values(self, data):
        with pytest.raises(ValueError):
            parse_engine_settings(data, environ={})


class TestLegacyGuards:

    @pytest.mark.parametrize("guard, expected", [
        ({"type": "has_property", "path": "props.draft_url"}, "props.draft_url != null"),
        ({"type": "has_facet", "key": "channel", "value": "email"}, "facets.channel == 'email'"),
        ({"type": "has_facet", "key": "owner", "value": "o'neil"}, "facets.owner == 'o\\'neil'"),
        (
            {"type": "facet_in", "key": "audience", "values": ["internal", "public"]},
            "(facets.audience == 'internal' || facets.audience == 'public')",
        ),
        ({"type": "facet_in", "key": "audience", "values": []}, "false"),
        (
            {"type": "all_facets_set", "keys": ["topic", "audience"]},
            "facets.topic != null && facets.audience != null",
        ),
        ({"type": "all_facets_set", "keys": []}, "true"),
    ])
    def test_compiles_to_expression(self, guard, expected):
        assert compile_legacy_guard(guard) == expected

    @pytest.mark.parametrize("guard", [
        {"type": "has_property", "path": "props..x"},
        {"type": "has_facet", "key": "a.b", "value": "x"},
        {"type": "facet_in", "key": "audience", "values": "public"},
        {"type": "type_key_matches", "pattern": "task.*"},
        {"type": "moon_phase"},
    ])
    def test_rejects_malformed(self, guard):
        with pytest.raises(ValueError):
            compile_legacy_guard(guard)

    def test_expression_and_list_are_conjoined(self):
        combined = compile_legacy_guards(
            "props.word_count > 0", [{"type": "has_property", "path": "props.title"}],
        )
        assert combined == "(props.word_count > 0) && (props.title != null)"
        assert compile_legacy_guards(None, None) is None


class TestFragments:

    def test_bare_on_key_is_restored(self, set_dir):
        # YAML 1.1 parses the unquoted "on" key as True.
        (template,) = parse_template_file(set_dir / "templates" / "task.yaml")
        (transition,) = template.fsm["transitions"]
        assert transition["on"] == "complete"
        assert True not in transition
        assert transition["actions"] == [{"name": "notify", "message": "Done"}]

    def test_event_alias_and_guards_list(self):
        fragment = parse_fsm_fragment({
            "transitions": [{
                "from": "a", "to": "b", "event": "go",
                "guards": [{"type": "has_facet", "key": "k", "value": "v"}],
            }],
        })
        (transition,) = fragment["transitions"]
        assert transition["on"] == "go"
        assert transition["guard"] == "facets.k == 'v'"
        assert "guards" not in transition

    def test_non_mapping_top_level(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ValueError, match="top level"):
            load_yaml_file(path)


class TestAssembly:

    def test_assembles_pack(self, set_dir):
        pack = assemble_from_directory(set_dir)
        assert pack.config_id == "small"
        assert pack.version == 3
        assert pack.settings.allowed_entity_types == ("task",)
        assert [t.id for t in pack.templates] == ["tpl-task-base"]
        assert pack.templates[0].source_file == "task.yaml"

    def test_checksum_is_stable_and_content_sensitive(self, set_dir):
        first = assemble_from_directory(set_dir).checksum
        assert assemble_from_directory(set_dir).checksum == first

        (set_dir / "engine.yaml").write_text(ENGINE_YAML.replace("version: 3", "version: 4"))
        assert assemble_from_directory(set_dir).checksum != first

    def test_checksum_ignores_database_url(self, set_dir, monkeypatch):
        first = assemble_from_directory(set_dir).checksum
        monkeypatch.setenv(DATABASE_URL_ENV, "sqlite:///elsewhere.db")
        pack = assemble_from_directory(set_dir)
        assert pack.settings.database_url == "sqlite:///elsewhere.db"
        assert pack.checksum == first

    def test_checksum_key_order_independent(self):
        assert compute_checksum({"a": 1, "b": 2}) == compute_checksum({"b": 2, "a": 1})

    def test_missing_engine_file(self, tmp_path):
        with pytest.raises(AssemblyError) as exc_info:
            assemble_from_directory(tmp_path)
        assert exc_info.value.code == "ASSEMBLY_FAILED"

    def test_broken_fragment_names_the_file(self, set_dir):
        (set_dir / "templates" / "zz_broken.yaml").write_text("templates:\n  - id: x\n")
        with pytest.raises(AssemblyError, match="zz_broken.yaml"):
            assemble_from_directory(set_dir)
