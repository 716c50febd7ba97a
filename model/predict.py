import logging
import os
import sys
import time
import torch
import torch.nn.functional as F
import numpy as np

# Make local modules importable when running from the repo root
ROOT_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

from model.load_model import load_model
from config import CLIP_DURATION, LABELS_PATH, SAMPLE_RATE, STEP_SIZE_MS, WINDOW_SIZE_MS
from model.dataset import load_label_mapping
from preprocessing.audio_features import compute_spectrogram, load_audio_full, pad_or_trim
from preprocessing.visualize_spectrogram import build_spectrogram_metadata, spectrogram_to_base64

logger = logging.getLogger(__name__)


def labels():
    # Load label mapping to translate indices -> class names
    label_to_index = load_label_mapping(LABELS_PATH)
    index_to_label = {v: k for k, v in label_to_index.items()}
    return label_to_index, index_to_label


def predict_batches(model, loader, device):
    """Class probabilities for every batch the loader yields.

    Returns ``(probs, targets)``: ``probs`` has one row per yielded sample, so
    ``steps * batch_size`` rows for a ``make_loader`` loader, including any
    rows that wrapped around to the start of the data. ``targets`` holds the
    matching true class indices.
    """
    model.eval()
    all_probs = []
    all_targets = []
    with torch.no_grad():
        for x, y in loader:
            logits = model(x.to(device))
            all_probs.append(F.softmax(logits, dim=1).cpu().numpy())
            all_targets.append(torch.argmax(y, dim=1).cpu().numpy())
    if not all_probs:
        return np.zeros((0, 0), dtype=np.float32), np.zeros(0, dtype=np.int64)
    return np.concatenate(all_probs), np.concatenate(all_targets)


def top_predictions(probs, index_to_label, top_k=3):
    top_k = max(1, min(top_k, len(probs)))
    top_indices = np.argsort(probs)[-top_k:][::-1]
    return [
        {"label": index_to_label[int(i)], "confidence": float(probs[i])}
        for i in top_indices
    ]


def compute_spectrogram_item(
    audio_path=None,
    sample_rate=SAMPLE_RATE,
    window_size_ms=WINDOW_SIZE_MS,
    step_size_ms=STEP_SIZE_MS,
    y=None,
    sr=None,
    include_image=True,
):
    # Load or use provided audio and compute its spectrogram
    if y is None:
        y, sr = load_audio_full(audio_path, sample_rate)
    sr = sr or sample_rate
    features = compute_spectrogram(
        y,
        sr,
        window_size_ms=window_size_ms,
        step_size_ms=step_size_ms,
    )
    metadata = build_spectrogram_metadata(
        features,
        sample_rate=sr,
        window_size_ms=window_size_ms,
        step_size_ms=step_size_ms,
    )
    plane = features[..., 0]
    spectrogram_item = {
        "image": spectrogram_to_base64(plane) if include_image else "",
        "features": plane.tolist(),
        "shape": list(features.shape),
        **metadata,
    }
    return features, spectrogram_item


def split_windows(y, target_len):
    # Fixed windows with 50% overlap; the last one is zero-padded
    if y.size == 0:
        return [0], [np.zeros(target_len, dtype=np.float32)]
    step = max(1, target_len // 2)
    max_start = max(0, len(y) - target_len)
    starts = list(range(0, max_start + 1, step))
    if starts[-1] + target_len < len(y):
        starts.append(max_start)
    windows = [pad_or_trim(y[start : start + target_len], target_len) for start in starts]
    return starts, windows


def predict(
    audio_path,
    sample_rate=SAMPLE_RATE,
    duration=CLIP_DURATION,
    window_size_ms=WINDOW_SIZE_MS,
    step_size_ms=STEP_SIZE_MS,
    top_k=3,
):
    start_time = time.perf_counter()
    logger.info("Predict pipeline start: %s", audio_path)
    label_to_index, index_to_label = labels()

    y, sr = load_audio_full(audio_path, target_sr=sample_rate)
    logger.info("Audio loaded (samples=%d, sr=%d).", y.size, sr)
    target_len = int(sample_rate * duration)
    starts, windows = split_windows(y, target_len)
    logger.info("Windows prepared (count=%d).", len(windows))

    # Load the model once and average probabilities over windows
    model, device = load_model(num_classes=len(label_to_index))
    summed_probs = None
    spectrograms = []
    with torch.no_grad():
        for start, window in zip(starts, windows):
            features, window_item = compute_spectrogram_item(
                sample_rate=sample_rate,
                window_size_ms=window_size_ms,
                step_size_ms=step_size_ms,
                y=window,
                sr=sr,
            )
            spectrograms.append(
                {
                    **window_item,
                    "window_start": float(start / sample_rate),
                    "window_end": float(min(start + target_len, max(len(y), 1)) / sample_rate),
                }
            )

            x = torch.tensor(features, dtype=torch.float32).unsqueeze(0)
            logits = model(x.to(device))
            probs = F.softmax(logits, dim=1).cpu().numpy()[0]
            summed_probs = probs if summed_probs is None else summed_probs + probs

    probs = summed_probs / len(windows)
    predictions = top_predictions(probs, index_to_label, top_k)

    logger.info("Predict pipeline complete in %.2fs.", time.perf_counter() - start_time)
    return {
        "top_prediction": predictions[0],
        "top_k": predictions,
        "spectrogram": spectrograms[0],
        "spectrograms": spectrograms,
    }
