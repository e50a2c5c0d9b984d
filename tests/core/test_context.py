"""Tests for persisted project context."""

import json

from taskpilot.adapters.workspace.memory import InMemoryWorkspace
from taskpilot.core.context import (
    CONTEXT_PATH,
    build_project_context,
    detect_industry,
    extract_features,
    load_project_context,
    save_project_context,
)


class TestDetection:
    def test_industry(self):
        assert detect_industry("A pizzeria website with a menu") == "restaurant"
        assert detect_industry("Online shop for shoes") == "e-commerce"
        assert detect_industry(None) == "general"
        assert detect_industry("Internal tooling") == "general"

    def test_first_matching_industry_wins(self):
        # "menu" (restaurant) is listed before "products" (e-commerce)
        assert detect_industry("menu of products") == "restaurant"

    def test_features(self):
        assert extract_features("Store with cart, login and checkout") == [
            "cart",
            "authentication",
            "payments",
        ]
        assert extract_features("") == []


class TestPersistence:
    """Tests for saving and loading .taskpilot/project.json."""

    def test_save_and_load(self):
        workspace = InMemoryWorkspace()
        context = build_project_context("shop", "Online store with search", "Flask")

        save_project_context(workspace, context)
        loaded = load_project_context(workspace)

        assert loaded.name == "shop"
        assert loaded.technology == "Flask"
        assert loaded.industry == "e-commerce"
        assert loaded.features == ["search"]
        stored = json.loads(workspace.files[CONTEXT_PATH])
        assert "createdAt" in stored

    def test_missing_context(self):
        assert load_project_context(InMemoryWorkspace()) is None

    def test_invalid_json_is_ignored(self):
        workspace = InMemoryWorkspace(files={CONTEXT_PATH: "{not json"})
        assert load_project_context(workspace) is None

    def test_missing_name_is_ignored(self):
        workspace = InMemoryWorkspace(files={CONTEXT_PATH: json.dumps({"description": "x"})})
        assert load_project_context(workspace) is None
