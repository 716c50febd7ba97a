import numpy as np
import torch
from fastapi.testclient import TestClient

from app import main as app_main
from app import websocket_handler as ws_handler


class DummyModel(torch.nn.Module):
    def forward(self, x):
        return torch.tensor([[1.0, 2.0, 3.0]], device=x.device)


def _stub_compute_spectrogram_item(
    sample_rate,
    y=None,
    sr=None,
    include_image=True,
):
    features = np.zeros((4, 8, 1), dtype=np.float32)
    item = {
        "image": "",
        "features": features[..., 0].tolist(),
        "shape": list(features.shape),
        "time_ticks": [0.01],
        "freq_ticks": [0.0],
        "level_ticks": [0.0],
        "sample_rate": int(sample_rate),
        "window_size_ms": 20.0,
        "step_size_ms": 10.0,
    }
    return features, item


def _patch_resources(monkeypatch):
    monkeypatch.setattr(
        ws_handler,
        "load_label_mapping",
        lambda _path: {"no": 0, "up": 1, "yes": 2},
    )
    monkeypatch.setattr(
        ws_handler,
        "load_model",
        lambda num_classes: (DummyModel(), torch.device("cpu")),
    )
    monkeypatch.setattr(
        ws_handler,
        "compute_spectrogram_item",
        _stub_compute_spectrogram_item,
    )


def test_websocket_predict(monkeypatch):
    _patch_resources(monkeypatch)

    client = TestClient(app_main.app)
    with client.websocket_connect("/ws/predict") as ws:
        ws.send_json({"sample_rate": 16000, "duration": 1.0, "top_k": 3})
        ws.send_bytes(np.zeros(16000, dtype=np.float32).tobytes())
        data = ws.receive_json()

    assert data["top_prediction"]["label"] == "yes"
    assert len(data["top_k"]) == 3
    assert data["spectrograms"][0]["window_end"] == 1.0


def test_websocket_rejects_odd_chunk(monkeypatch):
    _patch_resources(monkeypatch)

    client = TestClient(app_main.app)
    with client.websocket_connect("/ws/predict") as ws:
        ws.send_json({"sample_rate": 16000, "duration": 1.0})
        ws.send_bytes(b"\x00\x01\x02")
        assert ws.receive_json() == {"error": "invalid audio chunk size"}
        # The stream stays usable after a bad chunk
        ws.send_bytes(np.zeros(16000, dtype=np.float32).tobytes())
        assert "top_prediction" in ws.receive_json()


def test_websocket_invalid_config(monkeypatch):
    _patch_resources(monkeypatch)

    client = TestClient(app_main.app)
    with client.websocket_connect("/ws/predict") as ws:
        ws.send_json({"sample_rate": 100})
        data = ws.receive_json()

    assert data["error"].startswith("invalid config")
