from __future__ import annotations

import os

import pytest

from overlay.errors import ArtifactWriteError
from overlay.services.restart import RestartSignal


def test_touch_writes_timestamp_to_every_marker(tmp_path):
    paths = [str(tmp_path / "a" / "restart.flag"), str(tmp_path / "b" / "api.flag")]
    written = RestartSignal(paths, clock=lambda: 1700000000123).touch()
    assert written == paths
    for path in paths:
        with open(path, encoding="utf-8") as fh:
            assert fh.read() == "1700000000123"


def test_touch_is_idempotent(tmp_path):
    path = str(tmp_path / "restart.flag")
    ticks = iter([1, 2])
    signal = RestartSignal([path], clock=lambda: next(ticks))
    signal.touch()
    signal.touch()
    with open(path, encoding="utf-8") as fh:
        assert fh.read() == "2"
    assert os.listdir(tmp_path) == ["restart.flag"]


def test_one_unwritable_marker_does_not_block_others(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("file", encoding="utf-8")
    good = str(tmp_path / "ok.flag")
    written = RestartSignal([str(blocker / "restart.flag"), good], clock=lambda: 5).touch()
    assert written == [good]


def test_all_markers_unwritable_raises(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("file", encoding="utf-8")
    with pytest.raises(ArtifactWriteError):
        RestartSignal([str(blocker / "restart.flag")]).touch()


def test_no_markers_configured_is_a_noop():
    assert RestartSignal([]).touch() == []
