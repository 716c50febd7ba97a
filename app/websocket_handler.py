import logging
import librosa
import numpy as np
import torch
import torch.nn.functional as F
from fastapi import WebSocket, WebSocketDisconnect
from pydantic import ValidationError
from app.schemas import StreamConfig
from config import LABELS_PATH, SAMPLE_RATE
from model.load_model import load_model
from model.predict import compute_spectrogram_item, top_predictions
from model.dataset import load_label_mapping


def _get_stream_resources():
    # Both loaders cache, so this is cheap after the first connection
    label_to_index = load_label_mapping(LABELS_PATH)
    index_to_label = {v: k for k, v in label_to_index.items()}
    model, device = load_model(num_classes=len(label_to_index))
    return index_to_label, model, device


async def handle_websocket_predict(websocket: WebSocket):
    logger = logging.getLogger("uvicorn.error")
    await websocket.accept()
    logger.info("WebSocket connected.")

    # First message should be JSON config for the stream
    config_raw = await websocket.receive_text()
    try:
        config = StreamConfig.model_validate_json(config_raw)
        logger.info(
            "WebSocket config: sr=%s duration=%s top_k=%s",
            config.sample_rate,
            config.duration,
            config.top_k,
        )
    except ValidationError as exc:
        logger.warning("WebSocket config invalid: %s", exc)
        await websocket.send_json({"error": f"invalid config: {exc}"})
        await websocket.close()
        return

    try:
        index_to_label, model, device = _get_stream_resources()
    except FileNotFoundError as exc:
        logger.warning("WebSocket model unavailable: %s", exc)
        await websocket.send_json({"error": "model not available"})
        await websocket.close()
        return

    target_len = int(config.sample_rate * config.duration)
    buffer = np.zeros(0, dtype=np.float32)

    # Client sends raw float32 mono PCM in binary messages
    while True:
        try:
            message = await websocket.receive()
        except WebSocketDisconnect:
            logger.info("WebSocket disconnected.")
            break
        if message.get("type") == "websocket.disconnect":
            break
        if message.get("bytes") is not None:
            if len(message["bytes"]) % 4 != 0:
                await websocket.send_json({"error": "invalid audio chunk size"})
                continue
            chunk = np.frombuffer(message["bytes"], dtype=np.float32)
            if chunk.size == 0:
                continue
            buffer = np.concatenate([buffer, chunk])

            # Keep only the most recent window
            if buffer.size > target_len * 2:
                buffer = buffer[-target_len * 2 :]
            if buffer.size < target_len:
                continue

            window = buffer[-target_len:]
            if config.sample_rate != SAMPLE_RATE:
                window = librosa.resample(window, orig_sr=config.sample_rate, target_sr=SAMPLE_RATE)
            try:
                feat, window_item = compute_spectrogram_item(
                    sample_rate=SAMPLE_RATE,
                    y=window,
                    sr=SAMPLE_RATE,
                    include_image=False,
                )
                x = torch.tensor(feat, dtype=torch.float32).unsqueeze(0)
                with torch.no_grad():
                    logits = model(x.to(device))
                    probs = F.softmax(logits, dim=1).cpu().numpy()[0]
            except (RuntimeError, ValueError) as exc:
                logger.warning("WebSocket stream error: %s", exc)
                await websocket.send_json({"error": "stream processing failed"})
                continue

            window_item = {
                **window_item,
                "window_start": 0.0,
                "window_end": float(config.duration),
            }
            predictions = top_predictions(probs, index_to_label, config.top_k)
            await websocket.send_json(
                {
                    "top_prediction": predictions[0],
                    "top_k": predictions,
                    "spectrogram": window_item,
                    "spectrograms": [window_item],
                }
            )
        elif message.get("text") is not None:
            # Allow client to reset the buffer
            if message["text"].strip().lower() == "reset":
                buffer = np.zeros(0, dtype=np.float32)
