"""Tests for initflow.workflow.schema module."""

import pytest
import yaml

from initflow.lib.validate import ValidationError
from initflow.workflow.schema import (
    SchemaNotFound,
    get_artifact_def,
    get_artifact_order,
    get_dependents,
    get_gate_def,
    get_tier_artifacts,
    get_tier_def,
    get_tier_order,
    load_schema,
)


def write_schema(schemas_dir, name, data):
    path = schemas_dir / name / "schema.yaml"
    path.parent.mkdir(parents=True)
    path.write_text(data if isinstance(data, str) else yaml.safe_dump(data))
    return path


def minimal_schema(artifacts, gates=None):
    return {"name": "custom", "version": 1, "artifacts": artifacts, "gates": gates or {}}


class TestLoadBundledSchema:
    """The schema shipped with the package."""

    def test_loads_by_name(self, schema):
        """Bundled schema loads by name."""
        assert schema.name == "initiative-flow"
        assert schema.version == 1

    def test_tiers_in_order(self, schema):
        """Tiers come in order with their councils."""
        assert [t.id for t in schema.tiers] == ["tier1", "tier2", "tier3", "tier4"]
        assert get_tier_def(schema, "tier3").council == "architecture-council"

    def test_gates_defined(self, schema):
        """All four gates exist and only implementation is terminal."""
        assert set(schema.gates) == {"strategic", "product", "design", "implementation"}
        assert get_gate_def(schema, "implementation").terminal is True
        assert get_gate_def(schema, "strategic").terminal is False

    def test_criteria_parsed(self, schema):
        """Criterion fields are parsed from the document."""
        criteria = {c.id: c for c in get_gate_def(schema, "strategic").criteria}
        assert criteria["vision_aligned"].check == "field_value"
        assert criteria["vision_aligned"].expected is True
        assert criteria["sponsor_identified"].field == "sponsor"

    def test_tier_skills_may_be_mapping(self, schema):
        """Tier skills may be a mapping."""
        assert isinstance(get_tier_def(schema, "tier3").skills, dict)

    def test_schema_is_immutable(self, schema):
        """Loaded schemas cannot be modified."""
        with pytest.raises(AttributeError):
            schema.name = "other"


class TestLoadProjectSchema:
    """Schemas under openspec/schemas/<name>/schema.yaml."""

    def test_project_schema_takes_precedence(self, tmp_path):
        """A project schema shadows the bundled one."""
        write_schema(tmp_path, "initiative-flow", minimal_schema([{"id": "a", "generates": "a.md"}]) | {"name": "initiative-flow"})
        schema = load_schema("initiative-flow", tmp_path)
        assert [a.id for a in schema.artifacts] == ["a"]

    def test_missing_schema_raises_not_found(self, tmp_path):
        """Unknown schema names raise SchemaNotFound."""
        with pytest.raises(SchemaNotFound):
            load_schema("does-not-exist", tmp_path)

    def test_not_found_is_file_not_found(self, tmp_path):
        """SchemaNotFound is a FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            load_schema("does-not-exist", tmp_path)

    def test_invalid_yaml_raises_validation(self, tmp_path):
        """Broken YAML is a validation error."""
        write_schema(tmp_path, "broken", "name: [unclosed\n")
        with pytest.raises(ValidationError):
            load_schema("broken", tmp_path)

    def test_missing_artifacts_raises_validation(self, tmp_path):
        """Missing artifacts is named in the error."""
        write_schema(tmp_path, "custom", {"name": "custom", "version": 1, "gates": {}})
        with pytest.raises(ValidationError) as exc:
            load_schema("custom", tmp_path)
        assert "artifacts" in str(exc.value)

    def test_mistyped_version_raises_validation(self, tmp_path):
        """Version must be an integer."""
        write_schema(tmp_path, "custom", {"name": "custom", "version": "one", "artifacts": [], "gates": {}})
        with pytest.raises(ValidationError):
            load_schema("custom", tmp_path)

    def test_gates_must_be_object(self, tmp_path):
        """Gates given as a list are rejected."""
        write_schema(tmp_path, "custom", {"name": "custom", "version": 1, "artifacts": [], "gates": []})
        with pytest.raises(ValidationError):
            load_schema("custom", tmp_path)

    def test_unknown_requires_is_warned(self, tmp_path, caplog):
        """Requiring an unknown artifact only warns."""
        write_schema(tmp_path, "custom", minimal_schema([{"id": "a", "generates": "a.md", "requires": ["ghost"]}]))
        schema = load_schema("custom", tmp_path)
        assert get_artifact_order(schema) == ["a"]
        assert "ghost" in caplog.text


class TestArtifactOrder:
    """Topological order and cycle detection."""

    def test_dependencies_come_first(self, schema):
        """Every artifact follows its dependencies."""
        order = get_artifact_order(schema)
        for artifact in schema.artifacts:
            for dep in artifact.requires:
                assert order.index(dep) < order.index(artifact.id)

    def test_every_artifact_listed_once(self, schema):
        """Order contains each artifact exactly once."""
        order = get_artifact_order(schema)
        assert sorted(order) == sorted(a.id for a in schema.artifacts)

    def test_cycle_raises_at_load(self, tmp_path):
        """Dependency cycles fail at load time."""
        write_schema(tmp_path, "cyclic", minimal_schema([
            {"id": "a", "generates": "a.md", "requires": ["c"]},
            {"id": "b", "generates": "b.md", "requires": ["a"]},
            {"id": "c", "generates": "c.md", "requires": ["b"]},
        ]))
        with pytest.raises(ValidationError) as exc:
            load_schema("cyclic", tmp_path)
        assert "cycle" in str(exc.value).lower()

    def test_self_dependency_is_a_cycle(self, tmp_path):
        """An artifact requiring itself is a cycle."""
        write_schema(tmp_path, "selfref", minimal_schema([{"id": "a", "generates": "a.md", "requires": ["a"]}]))
        with pytest.raises(ValidationError):
            load_schema("selfref", tmp_path)


class TestDerivedViews:
    """Lookup helpers."""

    def test_get_artifact_def(self, schema):
        """Artifact lookup by id."""
        assert get_artifact_def(schema, "prd").generates == "tier2/prd.md"
        assert get_artifact_def(schema, "nope") is None

    def test_get_tier_artifacts(self, schema):
        """Artifacts of a tier in schema order."""
        assert [a.id for a in get_tier_artifacts(schema, "tier2")] == ["prd", "epics"]

    def test_get_dependents(self, schema):
        """Direct dependents of an artifact."""
        assert {a.id for a in get_dependents(schema, "stories")} == {"tasks", "test-strategy"}

    def test_get_tier_order(self):
        """Fixed tier order."""
        assert get_tier_order() == ["tier1", "tier2", "tier3", "tier4"]
