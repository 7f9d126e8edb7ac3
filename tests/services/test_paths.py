from __future__ import annotations

import pytest

from overlay.services.paths import get_path, has_path, set_path, split_path, unset_path


def test_set_path_creates_intermediate_objects():
    tree: dict = {}
    set_path(tree, "endpoints.agents.recursionLimit", 10)
    assert tree == {"endpoints": {"agents": {"recursionLimit": 10}}}


def test_set_path_replaces_scalar_intermediate():
    tree = {"interface": True}
    set_path(tree, "interface.sidePanel", False)
    assert tree == {"interface": {"sidePanel": False}}


def test_get_and_has_path():
    tree = {"a": {"b": {"c": None}}}
    assert get_path(tree, "a.b.c", "dflt") is None
    assert has_path(tree, "a.b.c")
    assert not has_path(tree, "a.x")
    assert get_path(None, "a", 1) == 1


def test_unset_path_prunes_empty_parents():
    tree = {"socialLoginConfig": {"github": {"enabled": True}}, "appTitle": "x"}
    assert unset_path(tree, "socialLoginConfig.github.enabled") is True
    assert tree == {"appTitle": "x"}


def test_unset_path_keeps_non_empty_parents():
    tree = {"interface": {"sidePanel": False, "presets": True}}
    unset_path(tree, "interface.sidePanel")
    assert tree == {"interface": {"presets": True}}


def test_unset_missing_path_is_noop():
    tree = {"a": 1}
    assert unset_path(tree, "a.b") is False
    assert unset_path(tree, "z") is False
    assert tree == {"a": 1}


def test_empty_path_rejected():
    with pytest.raises(ValueError):
        split_path("..")
