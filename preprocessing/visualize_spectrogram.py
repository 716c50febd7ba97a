import base64
import io
import numpy as np
from PIL import Image

from config import SAMPLE_RATE, STEP_SIZE_MS, WINDOW_SIZE_MS


def _to_image_layout(spec):
    # (T, F[, 1]) -> (F, T) with low frequencies on the bottom row
    spec = np.asarray(spec, dtype=np.float32)
    if spec.ndim == 3:
        spec = spec[..., 0]
    return np.flipud(spec.T)


def spectrogram_to_base64(spec):
    # Normalize safely to [0, 1] and encode as grayscale PNG
    pixels_f = _to_image_layout(spec)
    spec_min = float(np.min(pixels_f))
    spec_max = float(np.max(pixels_f))
    spec_range = spec_max - spec_min or 1.0
    normalized = (pixels_f - spec_min) / spec_range
    normalized = np.clip(normalized, 0.0, 1.0)

    pixels = np.ascontiguousarray((normalized * 255).astype(np.uint8))
    image = Image.fromarray(pixels).convert("RGB")

    buffer = io.BytesIO()
    image.save(buffer, format="PNG", optimize=True)
    return base64.b64encode(buffer.getvalue()).decode("utf-8")


def build_spectrogram_metadata(
    spec,
    sample_rate=SAMPLE_RATE,
    window_size_ms=WINDOW_SIZE_MS,
    step_size_ms=STEP_SIZE_MS,
    num_ticks=5,
):
    num_frames = spec.shape[0]
    hop_seconds = step_size_ms / 1e3
    # Frame centres: half a window in, one hop apart
    first = window_size_ms / 2e3
    last = first + (num_frames - 1) * hop_seconds if num_frames > 1 else first

    time_ticks = np.linspace(first, last, num_ticks)
    freq_ticks = np.linspace(0.0, sample_rate / 2, num_ticks)[::-1]

    level_min = float(np.min(spec))
    level_max = float(np.max(spec))
    level_mid = (level_min + level_max) / 2

    return {
        "time_ticks": [float(x) for x in time_ticks],
        "freq_ticks": [float(x) for x in freq_ticks],
        "level_ticks": [level_max, level_mid, level_min],
        "sample_rate": int(sample_rate),
        "window_size_ms": float(window_size_ms),
        "step_size_ms": float(step_size_ms),
    }
