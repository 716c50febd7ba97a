import logging
import os
import sys
import numpy as np
from sklearn.metrics import confusion_matrix
from tqdm import tqdm

# Ensure repo root is on sys.path for local imports
ROOT_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

from model.dataset import SpeechCommandsDataset, load_label_mapping, make_loader
from model.load_model import load_model
from model.predict import predict_batches
from model.train import load_metadata
from preprocessing.visualization import plot_confusion_matrix
from config import (
    BATCH_SIZE,
    CLIP_DURATION,
    CONFUSION_MATRIX_PATH,
    CSV_PATH,
    LABELS_PATH,
    NUM_WORKERS,
    SAMPLE_RATE,
    STEP_SIZE_MS,
    WINDOW_SIZE_MS,
)

logger = logging.getLogger(__name__)


def evaluate(model, loader, device, num_samples=None):
    """Accuracy plus true/predicted indices.

    Rows past ``num_samples`` come from the loader wrapping around to fill
    its last batch and are dropped.
    """
    probs, y_true = predict_batches(model, tqdm(loader, desc="eval", leave=False), device)
    if num_samples is not None:
        probs = probs[:num_samples]
        y_true = y_true[:num_samples]
    if len(y_true) == 0:
        return 0.0, y_true, y_true.copy()
    y_pred = np.argmax(probs, axis=1)
    acc = float(np.mean(y_pred == y_true))
    return acc, y_true, y_pred


def class_report(y_true, y_pred, labels_sorted):
    # Confusion matrix and class-wise accuracy
    cm = confusion_matrix(y_true, y_pred, labels=list(range(len(labels_sorted))))
    denom = cm.sum(axis=1)
    per_class_acc = np.divide(
        cm.diagonal(),
        denom,
        out=np.zeros_like(denom, dtype=float),
        where=denom != 0,
    )
    return cm, dict(zip(labels_sorted, per_class_acc.tolist()))


def main():
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    df = load_metadata(CSV_PATH)
    if not os.path.exists(LABELS_PATH):
        raise FileNotFoundError(
            f"label mapping not found: {LABELS_PATH}. Train the model first."
        )
    # Reuse the mapping the model was trained with
    label_to_index = load_label_mapping(LABELS_PATH)

    test_df = df[df["split"] == "test"]
    test_ds = SpeechCommandsDataset(
        test_df,
        label_to_index,
        sample_rate=SAMPLE_RATE,
        window_size_ms=WINDOW_SIZE_MS,
        step_size_ms=STEP_SIZE_MS,
        duration=CLIP_DURATION,
        augment=False,
    )
    test_loader = make_loader(test_ds, BATCH_SIZE, num_workers=NUM_WORKERS)
    logger.info("Evaluating %d test files.", len(test_ds))

    model, device = load_model(num_classes=len(label_to_index))

    acc, y_true, y_pred = evaluate(model, test_loader, device, num_samples=len(test_ds))
    print(f"\ntest_acc = {acc:.3f}")

    labels_sorted = [label for label, _ in sorted(label_to_index.items(), key=lambda x: x[1])]
    cm, per_class_acc = class_report(y_true, y_pred, labels_sorted)

    print("\nconfusion_matrix =")
    print(cm)
    print("\nclass_wise_accuracy =")
    for label, value in per_class_acc.items():
        print(f"{label}: {value:.3f}")

    path = plot_confusion_matrix(cm, labels_sorted, CONFUSION_MATRIX_PATH)
    print(f"\nwrote {path}")


if __name__ == "__main__":
    main()
