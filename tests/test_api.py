from fastapi.testclient import TestClient

from app import main as app_main


def _spectrogram_payload(**extra):
    return {
        "image": "",
        "features": [[0.0]],
        "shape": [1, 1, 1],
        "time_ticks": [0.01],
        "freq_ticks": [8000.0, 0.0],
        "level_ticks": [0.0, 0.0, 0.0],
        "sample_rate": 16000,
        "window_size_ms": 20.0,
        "step_size_ms": 10.0,
        **extra,
    }


def test_health():
    client = TestClient(app_main.app)
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_config():
    client = TestClient(app_main.app)
    resp = client.get("/config")
    assert resp.status_code == 200
    data = resp.json()
    assert data["sample_rate"] == 16000
    assert data["window_size_ms"] == 20
    assert data["num_classes"] == 30


def test_labels(monkeypatch):
    def fake_labels():
        return {"no": 0, "yes": 1}, {0: "no", 1: "yes"}

    monkeypatch.setattr(app_main, "get_labels", fake_labels)
    client = TestClient(app_main.app)
    resp = client.get("/labels")
    assert resp.status_code == 200
    assert resp.json()["labels"] == ["no", "yes"]


def test_labels_without_model(monkeypatch):
    def missing():
        raise FileNotFoundError("labels not found")

    monkeypatch.setattr(app_main, "get_labels", missing)
    client = TestClient(app_main.app)
    assert client.get("/labels").status_code == 503


def test_predict_endpoint(monkeypatch):
    seen = {}

    def fake_predict(path, top_k):
        seen["top_k"] = top_k
        window = _spectrogram_payload(window_start=0.0, window_end=1.0)
        return {
            "top_prediction": {"label": "yes", "confidence": 0.9},
            "top_k": [{"label": "yes", "confidence": 0.9}],
            "spectrogram": window,
            "spectrograms": [window],
        }

    monkeypatch.setattr(app_main, "run_predict", fake_predict)
    client = TestClient(app_main.app)
    resp = client.post(
        "/predict?top_k=4",
        files={"file": ("test.wav", b"fake", "audio/wav")},
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["top_prediction"]["label"] == "yes"
    assert "spectrograms" in data
    assert seen["top_k"] == 4


def test_predict_endpoint_undecodable(monkeypatch):
    def fake_predict(path, top_k):
        raise RuntimeError("bad audio")

    monkeypatch.setattr(app_main, "run_predict", fake_predict)
    client = TestClient(app_main.app)
    resp = client.post("/predict", files={"file": ("test.wav", b"fake", "audio/wav")})
    assert resp.status_code == 400


def test_predict_endpoint_without_model(monkeypatch):
    def fake_predict(path, top_k):
        raise FileNotFoundError("Model file not found")

    monkeypatch.setattr(app_main, "run_predict", fake_predict)
    client = TestClient(app_main.app)
    resp = client.post("/predict", files={"file": ("test.wav", b"fake", "audio/wav")})
    assert resp.status_code == 503


def test_spectrogram_endpoint(monkeypatch):
    def fake_spectrogram(*_args, **_kwargs):
        return None, _spectrogram_payload()

    monkeypatch.setattr(app_main, "compute_spectrogram_item", fake_spectrogram)
    client = TestClient(app_main.app)
    resp = client.post(
        "/spectrogram",
        files={"file": ("test.wav", b"fake", "audio/wav")},
    )
    assert resp.status_code == 200
    data = resp.json()
    assert "features" in data
    assert data["shape"] == [1, 1, 1]


def test_spectrogram_endpoint_rejects_bad_step():
    client = TestClient(app_main.app)
    resp = client.post(
        "/spectrogram?window_size_ms=10&step_size_ms=20",
        files={"file": ("test.wav", b"fake", "audio/wav")},
    )
    assert resp.status_code == 400


def test_spectrogram_endpoint_undecodable_upload():
    client = TestClient(app_main.app)
    resp = client.post(
        "/spectrogram",
        files={"file": ("test.wav", b"not audio at all", "audio/wav")},
    )
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Could not decode audio file."
