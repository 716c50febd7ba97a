import os
import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np

from config import SAMPLE_RATE, STEP_SIZE_MS, WINDOW_SIZE_MS


def _ensure_parent(path):
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)


def plot_spectrogram(
    spec,
    output_path,
    sample_rate=SAMPLE_RATE,
    window_size_ms=WINDOW_SIZE_MS,
    step_size_ms=STEP_SIZE_MS,
    title="Log spectrogram",
):
    spec = np.asarray(spec)
    if spec.ndim == 3:
        spec = spec[..., 0]
    num_frames = spec.shape[0]
    start = window_size_ms / 2e3
    extent = [start, start + num_frames * step_size_ms / 1e3, 0, sample_rate / 2]

    fig, ax = plt.subplots(figsize=(10, 4))
    im = ax.imshow(spec.T, origin="lower", aspect="auto", cmap="magma", extent=extent)
    ax.set_title(title)
    ax.set_xlabel("Time (s)")
    ax.set_ylabel("Frequency (Hz)")
    fig.colorbar(im, ax=ax, label="log magnitude")

    _ensure_parent(output_path)
    fig.savefig(output_path, bbox_inches="tight")
    plt.close(fig)
    return output_path


def plot_confusion_matrix(cm, labels, output_path, normalize=False, title="Confusion matrix"):
    cm = np.asarray(cm)
    if cm.shape != (len(labels), len(labels)):
        raise ValueError(
            f"confusion matrix shape {cm.shape} does not match {len(labels)} labels"
        )
    values = cm.astype(float)
    if normalize:
        row_sums = values.sum(axis=1, keepdims=True)
        values = np.divide(values, row_sums, out=np.zeros_like(values), where=row_sums != 0)

    size = max(6, 0.4 * len(labels))
    fig, ax = plt.subplots(figsize=(size, size))
    im = ax.imshow(values, interpolation="nearest", cmap="Blues")
    fig.colorbar(im, ax=ax, fraction=0.046, pad=0.04)
    ax.set_title(title)
    ax.set_xticks(range(len(labels)))
    ax.set_yticks(range(len(labels)))
    ax.set_xticklabels(labels, rotation=90)
    ax.set_yticklabels(labels)
    ax.set_xlabel("Predicted")
    ax.set_ylabel("True")

    # Annotate non-empty cells
    threshold = values.max() / 2 if values.size else 0.0
    for i in range(values.shape[0]):
        for j in range(values.shape[1]):
            if cm[i, j] == 0:
                continue
            text = f"{values[i, j]:.2f}" if normalize else str(int(cm[i, j]))
            ax.text(
                j,
                i,
                text,
                ha="center",
                va="center",
                fontsize=6,
                color="white" if values[i, j] > threshold else "black",
            )

    fig.tight_layout()
    _ensure_parent(output_path)
    fig.savefig(output_path, dpi=150)
    plt.close(fig)
    return output_path
