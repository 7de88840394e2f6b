import numpy as np
import pytest
from fastapi.testclient import TestClient

from facetrack.api.main import app
from facetrack.api.services import state as engine_state
from facetrack.api.services.engine import OverlayEngine
from facetrack.api.services.state import get_engine
from facetrack.core.config.settings import OverlaySettings
from facetrack.core.types import DetectionResult, Face, FrameGeometry, Viewport


class _NoSource:
    def read(self):
        return None

    def close(self):
        pass


def _engine() -> OverlayEngine:
    return OverlayEngine(
        OverlaySettings(viewport="390x844"),
        detector_factory=lambda s: None,
        source_factory=lambda s, facing: _NoSource(),
    )


def _publish_centre_face(engine: OverlayEngine) -> None:
    face = Face.from_polylines({"nose_bridge": [(540, 900), (540, 960)]}, landmarks={"nose_base": (540, 960)})
    result = DetectionResult(faces=(face,), geometry=FrameGeometry(1080, 1920), is_mirrored=True)
    engine.handle_result(result, engine.state.submit())


@pytest.fixture
def engine():
    eng = _engine()
    app.dependency_overrides[get_engine] = lambda: eng
    yield eng
    app.dependency_overrides.pop(get_engine, None)


def test_health_endpoint():
    client = TestClient(app)
    res = client.get("/health")
    assert res.status_code == 200
    assert res.json()["status"] == "ok"


def test_overlay_geometry_maps_into_viewport(engine):
    _publish_centre_face(engine)
    res = TestClient(app).get("/overlay/geometry")
    assert res.status_code == 200
    data = res.json()
    assert data["drawable"] is True
    assert data["viewport"] == [390.0, 844.0]
    marker = data["faces"][0]["markers"][0]
    assert marker["name"] == "nose_base"
    assert marker["center"] == pytest.approx([195.0, 422.0])


def test_zero_viewport_is_not_drawable(engine):
    _publish_centre_face(engine)
    res = TestClient(app).post("/overlay/viewport", json={"width": 0, "height": 0})
    assert res.status_code == 200
    data = res.json()
    assert data["drawable"] is False
    assert data["faces"] == []


def test_negative_viewport_rejected(engine):
    res = TestClient(app).post("/overlay/viewport", json={"width": -1, "height": 10})
    assert res.status_code == 422


def test_switch_facing_clears_overlay(engine):
    _publish_centre_face(engine)
    client = TestClient(app)
    res = client.post("/camera/facing", json={"facing": "Back"})
    assert res.status_code == 200
    assert res.json() == {"facing": "back", "mirrored": False, "session": 1}
    assert client.get("/overlay/geometry").json()["faces"] == []


def test_switch_facing_rejects_unknown_value(engine):
    res = TestClient(app).post("/camera/facing", json={"facing": "upwards"})
    assert res.status_code == 422


def test_stats_delivers_notification_once(engine):
    _publish_centre_face(engine)
    engine.report_failure("detector crashed")
    client = TestClient(app)

    first = client.get("/stats").json()
    assert first["faces"] == 1
    assert first["error"] == "detector crashed"
    assert first["notification"] == "detector crashed"

    second = client.get("/stats").json()
    assert second["notification"] is None


def test_config_rejects_invalid_payload(monkeypatch):
    monkeypatch.setattr(engine_state, "_settings", OverlaySettings())
    client = TestClient(app)
    cfg = client.get("/config").json()
    cfg["scale_mode"] = "stretch"
    res = client.post("/config", json=cfg)
    assert res.status_code == 422


def test_config_presets_listed_and_unknown_rejected():
    client = TestClient(app)
    presets = client.get("/config/presets").json()["presets"]
    assert {p["id"] for p in presets} >= {"rotated_metadata", "upright_normalized", "mirror_upstream"}
    assert client.post("/config/presets/nope").status_code == 404


def test_overlay_websocket_reports_undrawable_pass():
    eng = _engine()
    eng.resize(0, 0)
    eng._preview_frame = np.zeros((10, 10, 3), dtype=np.uint8)
    eng.render_once()

    previous = engine_state._engine
    engine_state._engine = eng
    try:
        with TestClient(app).websocket_connect("/stream/overlay") as ws:
            data = ws.receive_json()
            assert data["drawable"] is False
            assert data["viewport"] == [0.0, 0.0]
    finally:
        engine_state._engine = previous


def test_health_reports_idle_without_starting_engine(monkeypatch):
    monkeypatch.setattr(engine_state, "_engine", None)
    data = TestClient(app).get("/health").json()
    assert data == {"status": "ok", "engine": "idle", "session": None, "error": None}
    assert engine_state._engine is None


def test_health_reports_engine_session_and_error(monkeypatch):
    eng = _engine()
    eng.switch_camera("back")
    eng.report_failure("detector crashed")
    monkeypatch.setattr(engine_state, "_engine", eng)
    data = TestClient(app).get("/health").json()
    assert data["engine"] == "stopped"
    assert data["session"] == 1
    assert data["error"] == "detector crashed"


def test_overlay_layer_png(engine):
    client = TestClient(app)
    _publish_centre_face(engine)
    res = client.get("/overlay/layer.png")
    assert res.status_code == 200
    assert res.headers["content-type"] == "image/png"
    assert res.content[:4] == b"\x89PNG"

    client.post("/overlay/viewport", json={"width": 0, "height": 0})
    assert client.get("/overlay/layer.png").status_code == 204


def test_config_update_keeps_layout_viewport_and_camera(monkeypatch):
    eng = _engine()
    eng.resize(500, 300)
    eng.switch_camera("back")
    monkeypatch.setattr(engine_state, "_engine", eng)
    monkeypatch.setattr(engine_state, "_settings", eng.settings)
    monkeypatch.setattr(engine_state, "load_settings", lambda: OverlaySettings(viewport="390x844"))
    monkeypatch.setattr(
        engine_state,
        "OverlayEngine",
        lambda settings, **kw: OverlayEngine(
            settings, detector_factory=lambda s: None, source_factory=lambda s, facing: _NoSource(), **kw
        ),
    )

    client = TestClient(app)
    cfg = client.get("/config").json()
    cfg["scale_mode"] = "fit"
    try:
        res = client.post("/config", json=cfg)
        assert res.status_code == 200
        assert res.json()["scale_mode"] == "fit"
        restarted = engine_state._engine
        assert restarted is not eng
        assert restarted.running is True
        assert restarted.state.viewport() == Viewport(500, 300)
        assert restarted.facing == "back"
        assert restarted.scale_mode.value == "fit"
    finally:
        engine_state._engine.stop()


def test_config_rejects_malformed_viewport(monkeypatch):
    monkeypatch.setattr(engine_state, "_settings", OverlaySettings())
    client = TestClient(app)
    cfg = client.get("/config").json()
    cfg["viewport"] = "wide"
    assert client.post("/config", json=cfg).status_code == 422
