"""Shared fixtures for initflow tests."""

import pytest
import yaml

from initflow.workflow.schema import load_schema

MANDATE = """---
vision_aligned: true
sponsor: Jane
success_metrics:
  - 20% faster onboarding
---
# Strategic Mandate
"""


@pytest.fixture
def schema(tmp_path):
    """The bundled initiative-flow schema (no project override)."""
    return load_schema("initiative-flow", tmp_path / "no-project-schemas")


@pytest.fixture
def initiatives_dir(tmp_path):
    path = tmp_path / "openspec" / "initiatives"
    path.mkdir(parents=True)
    return path


@pytest.fixture
def make_initiative(initiatives_dir):
    """Factory: write state.yaml for an initiative and return its directory."""

    def _make(initiative_id="test-init", stage="draft", escalations=None, history=None, title="Test Initiative"):
        init_dir = initiatives_dir / initiative_id
        init_dir.mkdir(parents=True, exist_ok=True)
        state = {
            "metadata": {
                "id": initiative_id,
                "title": title,
                "created_at": "2026-01-01T00:00:00+00:00",
                "updated_at": "2026-01-01T00:00:00+00:00",
                "mode": "strict",
                "allow_overlap": False,
            },
            "stage": stage,
            "history": history or [],
            "escalations": escalations or [],
            "blockers": [],
        }
        (init_dir / "state.yaml").write_text(yaml.safe_dump(state, sort_keys=False))
        return init_dir

    return _make


def write(root, rel_path, content=""):
    """Write a file under root, creating parent directories."""
    path = root / rel_path
    path.parent.mkdir(parents=True, exist_ok=True)
    if not isinstance(content, str):
        content = yaml.safe_dump(content, sort_keys=False)
    path.write_text(content)
    return path
