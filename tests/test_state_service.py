from __future__ import annotations

import pytest

import facetrack.api.services.state as state
from facetrack.core.config.settings import OverlaySettings, viewport_from_settings
from facetrack.core.overlay.state import OverlayState
from facetrack.core.types import Viewport


class DummyEngine:
    def __init__(self, settings: OverlaySettings, *, viewport=None, facing=None):
        self.settings = settings
        self.state = OverlayState(viewport=viewport or viewport_from_settings(settings))
        self.facing = facing or settings.camera_facing
        self.running = False
        self.started = 0
        self.stopped = 0

    def start(self):
        self.started += 1

    def stop(self):
        self.stopped += 1


@pytest.fixture(autouse=True)
def _reset_singletons(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(state, "_settings", None)
    monkeypatch.setattr(state, "_engine", None)


def test_get_settings_initializes_once(monkeypatch: pytest.MonkeyPatch):
    calls = {"n": 0}

    def _load():
        calls["n"] += 1
        return OverlaySettings(viewport="100x200")

    monkeypatch.setattr(state, "load_settings", _load)

    assert state.get_settings().viewport == "100x200"
    assert state.get_settings().viewport == "100x200"
    assert calls["n"] == 1


def test_reload_settings_recreates_engine_when_running(monkeypatch: pytest.MonkeyPatch):
    old_engine = DummyEngine(OverlaySettings())
    state._engine = old_engine

    monkeypatch.setattr(state, "OverlayEngine", DummyEngine)
    monkeypatch.setattr(state, "load_settings", lambda: OverlaySettings())

    updated = state.reload_settings({"mirror_convention": "upstream"})
    assert updated.mirror_convention == "upstream"
    assert old_engine.stopped == 1
    assert state._engine is not old_engine
    assert state._engine.started == 1
    assert state._engine.settings.mirror_convention == "upstream"


def test_reload_settings_without_patch_keeps_loaded_values(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(state, "load_settings", lambda: OverlaySettings(scale_mode="fit"))
    assert state.reload_settings(None).scale_mode == "fit"
    assert state._engine is None


def test_get_engine_creates_and_starts_once(monkeypatch: pytest.MonkeyPatch):
    state._settings = OverlaySettings()
    monkeypatch.setattr(state, "OverlayEngine", DummyEngine)

    eng = state.get_engine()
    assert isinstance(eng, DummyEngine)
    assert eng.started == 1
    assert state.get_engine() is eng
    assert eng.started == 1


def test_stop_engine_stops_and_clears_engine():
    old_engine = DummyEngine(OverlaySettings())
    state._engine = old_engine
    state.stop_engine()
    assert old_engine.stopped == 1
    assert state._engine is None
    state.stop_engine()


def test_reload_keeps_layout_viewport_and_selected_camera(monkeypatch: pytest.MonkeyPatch):
    old_engine = DummyEngine(OverlaySettings(viewport="390x844", camera_facing="front"))
    old_engine.state.resize(Viewport(500, 300))
    old_engine.facing = "back"
    state._engine = old_engine

    monkeypatch.setattr(state, "OverlayEngine", DummyEngine)
    monkeypatch.setattr(state, "load_settings", lambda: OverlaySettings(viewport="390x844"))

    state.reload_settings({"scale_mode": "fit"})
    assert state._engine.state.viewport() == Viewport(500, 300)
    assert state._engine.facing == "back"


def test_reload_adopts_explicit_viewport_and_facing_changes(monkeypatch: pytest.MonkeyPatch):
    old_engine = DummyEngine(OverlaySettings(viewport="390x844", camera_facing="front"))
    old_engine.state.resize(Viewport(500, 300))
    state._engine = old_engine

    monkeypatch.setattr(state, "OverlayEngine", DummyEngine)
    monkeypatch.setattr(state, "load_settings", lambda: OverlaySettings(viewport="390x844"))

    state.reload_settings({"viewport": "800x600", "camera_facing": "back"})
    assert state._engine.state.viewport() == Viewport(800, 600)
    assert state._engine.facing == "back"


def test_peek_engine_never_creates(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(state, "OverlayEngine", DummyEngine)
    assert state.peek_engine() is None
    assert state._engine is None
