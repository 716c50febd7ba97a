import logging
import os
import shutil
import subprocess
import time
import numpy as np
import audioread
import librosa
import soundfile as sf
from scipy import signal
from config import (
    EPS,
    SAMPLE_RATE,
    STEP_SIZE_MS,
    WINDOW_SIZE_MS,
)

logger = logging.getLogger(__name__)


# Call load_audio_full, then optionally pad/trim to a fixed duration
def load_audio(audio_path, target_sr=SAMPLE_RATE, duration=None):
    y, sr = load_audio_full(audio_path, target_sr=target_sr)
    if duration is not None:
        y = pad_or_trim(y, int(target_sr * duration))
    return y, sr


def pad_or_trim(y, target_len):
    if len(y) < target_len:
        return np.pad(y, (0, target_len - len(y)), mode="constant")
    return y[:target_len]


# Load full audio waveform as mono float32 at the target sample rate
def load_audio_full(audio_path, target_sr=SAMPLE_RATE):
    logger.debug("Audio load start: %s", audio_path)
    try:
        loader_pref = os.getenv("AUDIO_LOADER", "soundfile").lower()
        if loader_pref == "librosa":
            y, sr = _librosa_load(audio_path, target_sr)
            logger.debug("Audio load done via librosa (samples=%d, sr=%d).", y.size, sr)
            return y.astype(np.float32), sr

        if loader_pref == "ffmpeg" and shutil.which("ffmpeg"):
            cmd = [
                "ffmpeg",
                "-nostdin",
                "-i",
                audio_path,
                "-f",
                "f32le",
                "-ac",
                "1",
                "-ar",
                str(target_sr),
                "pipe:1",
            ]
            timeout_seconds = float(os.getenv("FFMPEG_TIMEOUT_SECONDS", "20"))
            result = subprocess.run(
                cmd,
                check=True,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                timeout=timeout_seconds,
            )
            y = np.frombuffer(result.stdout, dtype=np.float32)
            logger.debug("Audio load done via ffmpeg (samples=%d, sr=%d).", y.size, target_sr)
            return y, target_sr

        y, sr = sf.read(audio_path, dtype="float32", always_2d=False)
        if y.ndim > 1:
            y = np.mean(y, axis=1)
        if sr != target_sr:
            y = librosa.resample(y, orig_sr=sr, target_sr=target_sr)
            sr = target_sr
        logger.debug("Audio load done via soundfile (samples=%d, sr=%d).", y.size, sr)
        return y.astype(np.float32), sr
    except (RuntimeError, OSError, subprocess.SubprocessError):
        # Fall back to librosa's loader; its errors propagate
        logger.info("Audio load fallback to librosa for %s", audio_path)
        y, sr = _librosa_load(audio_path, target_sr)
        return y.astype(np.float32), sr


def _librosa_load(audio_path, target_sr):
    # Decode failures from audioread surface as ValueError
    try:
        return librosa.load(audio_path, sr=target_sr, mono=True)
    except audioread.exceptions.DecodeError as exc:
        raise ValueError(f"could not decode audio file {audio_path}: {exc}") from exc


def window_params(sr=SAMPLE_RATE, window_size_ms=WINDOW_SIZE_MS, step_size_ms=STEP_SIZE_MS):
    # Samples per analysis window and per hop
    nperseg = int(round(window_size_ms * sr / 1e3))
    hop = int(round(step_size_ms * sr / 1e3))
    if nperseg <= 0 or hop <= 0:
        raise ValueError(
            f"window ({window_size_ms} ms) and step ({step_size_ms} ms) must "
            f"cover at least one sample at sr={sr}"
        )
    if hop > nperseg:
        raise ValueError("step_size_ms must not exceed window_size_ms")
    return nperseg, hop


def spectrogram_shape(
    num_samples,
    sr=SAMPLE_RATE,
    window_size_ms=WINDOW_SIZE_MS,
    step_size_ms=STEP_SIZE_MS,
):
    """Shape of ``log_specgram`` for a waveform of ``num_samples`` samples."""
    nperseg, hop = window_params(sr, window_size_ms, step_size_ms)
    num_samples = max(num_samples, nperseg)
    num_frames = 1 + (num_samples - nperseg) // hop
    return num_frames, nperseg // 2 + 1


def log_specgram(
    y,
    sr=SAMPLE_RATE,
    window_size_ms=WINDOW_SIZE_MS,
    step_size_ms=STEP_SIZE_MS,
    eps=EPS,
):
    """Log-magnitude spectrogram of a mono waveform.

    Returns a float32 array of shape ``(time_chunks, freq_bins)`` where
    ``freq_bins = nperseg // 2 + 1``. Inputs shorter than one window are
    zero-padded to one window first.
    """
    nperseg, hop = window_params(sr, window_size_ms, step_size_ms)
    y = np.ascontiguousarray(y, dtype=np.float32)
    if y.ndim != 1:
        raise ValueError(f"expected a mono waveform, got shape {y.shape}")
    if y.size < nperseg:
        y = np.pad(y, (0, nperseg - y.size), mode="constant")

    _, _, spec = signal.spectrogram(
        y,
        fs=sr,
        window="hann",
        nperseg=nperseg,
        noverlap=nperseg - hop,
        detrend=False,
    )
    return np.log(spec.T.astype(np.float32) + eps)


def compute_spectrogram(
    y,
    sr=SAMPLE_RATE,
    window_size_ms=WINDOW_SIZE_MS,
    step_size_ms=STEP_SIZE_MS,
    eps=EPS,
):
    # (time_chunks, freq_bins, 1): channel axis last
    step_start = time.perf_counter()
    spec = log_specgram(
        y,
        sr=sr,
        window_size_ms=window_size_ms,
        step_size_ms=step_size_ms,
        eps=eps,
    )
    logger.debug("Spectrogram done in %.3fs (shape=%s).", time.perf_counter() - step_start, spec.shape)
    return np.expand_dims(spec, axis=-1)


def random_time_shift(y, max_fraction, rng=np.random):
    max_shift = int(max_fraction * y.size)
    if max_shift <= 0:
        return y
    shift = rng.randint(-max_shift, max_shift + 1)
    return np.roll(y, shift)


def add_noise(y, noise_std, rng=np.random):
    if noise_std <= 0:
        return y
    return (y + rng.normal(0.0, noise_std, size=y.shape)).astype(np.float32)


def mask_spectrogram(
    spec,
    time_mask_param,
    freq_mask_param,
    num_time_masks=1,
    num_freq_masks=1,
    rng=np.random,
):
    # Random time/frequency masking on a (T, F, ...) spectrogram
    masked = spec.copy()
    num_frames, num_bins = masked.shape[:2]
    fill = float(masked.min()) if masked.size else 0.0

    for _ in range(num_freq_masks):
        f = rng.randint(0, freq_mask_param + 1)
        if f == 0 or f >= num_bins:
            continue
        f0 = rng.randint(0, num_bins - f)
        masked[:, f0 : f0 + f] = fill

    for _ in range(num_time_masks):
        t = rng.randint(0, time_mask_param + 1)
        if t == 0 or t >= num_frames:
            continue
        t0 = rng.randint(0, num_frames - t)
        masked[t0 : t0 + t] = fill

    return masked
