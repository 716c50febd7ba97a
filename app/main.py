import logging
import os
import sys
import tempfile

import uvicorn
from fastapi import Depends, FastAPI, File, HTTPException, UploadFile, WebSocket
from fastapi.middleware.cors import CORSMiddleware

# Make local modules importable when running from the repo root
ROOT_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

from config import CLIP_DURATION, NUM_CLASSES, SAMPLE_RATE, STEP_SIZE_MS, WINDOW_SIZE_MS
from model.predict import compute_spectrogram_item
from model.predict import labels as get_labels
from model.predict import predict as run_predict
from app.schemas import (
    ConfigResponse,
    HealthResponse,
    LabelsResponse,
    PredictRequest,
    PredictResponse,
    SpectrogramRequest,
    SpectrogramResponse,
)
from app.websocket_handler import handle_websocket_predict

logger = logging.getLogger("uvicorn.error")

app = FastAPI(title="Speech Commands CNN API")

# Allow local frontend dev servers to call the API
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _save_upload(upload: UploadFile):
    # Save to a temp file so the audio loaders can read it by path
    if not upload.filename:
        raise HTTPException(status_code=400, detail="No file provided.")
    suffix = os.path.splitext(upload.filename)[1] or ".wav"
    with tempfile.NamedTemporaryFile(delete=False, suffix=suffix) as tmp:
        tmp.write(upload.file.read())
        return tmp.name


@app.get("/health", response_model=HealthResponse)
def health():
    return {"status": "ok"}


@app.get("/config", response_model=ConfigResponse)
def config():
    return {
        "sample_rate": SAMPLE_RATE,
        "duration": CLIP_DURATION,
        "window_size_ms": WINDOW_SIZE_MS,
        "step_size_ms": STEP_SIZE_MS,
        "num_classes": NUM_CLASSES,
    }


@app.get("/labels", response_model=LabelsResponse)
def labels():
    try:
        _, index_to_label = get_labels()
    except FileNotFoundError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return {"labels": [index_to_label[i] for i in range(len(index_to_label))]}


@app.post("/predict", response_model=PredictResponse)
def predict_audio(
    params: PredictRequest = Depends(),
    file: UploadFile = File(...),
):
    tmp_path = _save_upload(file)
    try:
        return run_predict(tmp_path, top_k=params.top_k)
    except FileNotFoundError as exc:
        logger.warning("Model artifacts missing: %s", exc)
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    except (RuntimeError, ValueError, OSError) as exc:
        logger.warning("Could not decode upload %s: %s", file.filename, exc)
        raise HTTPException(status_code=400, detail="Could not decode audio file.") from exc
    finally:
        os.remove(tmp_path)


@app.post("/spectrogram", response_model=SpectrogramResponse)
def spectrogram(
    params: SpectrogramRequest = Depends(),
    file: UploadFile = File(...),
):
    if params.step_size_ms > params.window_size_ms:
        raise HTTPException(status_code=400, detail="step_size_ms must not exceed window_size_ms.")
    tmp_path = _save_upload(file)
    try:
        _, item = compute_spectrogram_item(
            tmp_path,
            window_size_ms=params.window_size_ms,
            step_size_ms=params.step_size_ms,
            include_image=params.include_image,
        )
    except (RuntimeError, ValueError, OSError) as exc:
        logger.warning("Could not decode upload %s: %s", file.filename, exc)
        raise HTTPException(status_code=400, detail="Could not decode audio file.") from exc
    finally:
        os.remove(tmp_path)
    return item


@app.websocket("/ws/predict")
async def websocket_predict(websocket: WebSocket):
    await handle_websocket_predict(websocket)


if __name__ == "__main__":
    uvicorn.run(app, host=os.getenv("HOST", "127.0.0.1"), port=int(os.getenv("PORT", "8000")))
