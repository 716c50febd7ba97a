import logging
import os
import random
import sys
import numpy as np
import pandas as pd
import torch
from torch.optim.lr_scheduler import ReduceLROnPlateau
from tqdm import tqdm

# Ensure repo root is on sys.path for local imports
ROOT_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

from model.dataset import (
    SpeechCommandsDataset,
    build_label_mapping,
    make_loader,
    save_label_mapping,
)
from model.cnn import SpeechCNN
from preprocessing.audio_features import spectrogram_shape
from preprocessing.prepare_speech_commands import prepare
from config import (
    AUGMENT,
    BATCH_SIZE,
    CLIP_DURATION,
    CSV_PATH,
    EARLY_STOPPING_PATIENCE,
    EPOCHS,
    FREQ_MASK_PARAM,
    HISTORY_PATH,
    LABELS_PATH,
    LEARNING_RATE,
    MODEL_PATH,
    NOISE_STD,
    NUM_FREQ_MASKS,
    NUM_TIME_MASKS,
    NUM_WORKERS,
    SAMPLE_RATE,
    SCHEDULER_FACTOR,
    SCHEDULER_PATIENCE,
    SEED,
    STEP_SIZE_MS,
    STEPS_PER_EPOCH,
    TIME_MASK_PARAM,
    TIME_SHIFT_MAX_FRACTION,
    WEIGHT_DECAY,
    WINDOW_SIZE_MS,
)

logger = logging.getLogger(__name__)


def load_metadata(csv_path=CSV_PATH):
    # Download and enumerate the dataset on first use
    if not os.path.exists(csv_path):
        prepare(output_csv=csv_path)
    df = pd.read_csv(csv_path)
    missing = {"file_path", "label", "split"} - set(df.columns)
    if missing:
        raise ValueError(
            f"{csv_path} is missing columns {sorted(missing)}. "
            "Re-run scripts/prepare_speech_commands.py to regenerate the CSV."
        )
    return df


def set_seed(seed):
    # Make results more reproducible across runs
    random.seed(seed)
    np.random.seed(seed)
    torch.manual_seed(seed)
    torch.cuda.manual_seed_all(seed)


def _accuracy_counts(logits, targets):
    preds = torch.argmax(logits, dim=1)
    return (preds == torch.argmax(targets, dim=1)).sum().item()


def train_epoch(model, loader, optimizer, criterion, device):
    # One pass over the training batches
    model.train()
    total_loss = 0.0
    correct = 0
    total = 0
    for x, y in tqdm(loader, desc="train", leave=False):
        x = x.to(device)
        y = y.to(device)
        optimizer.zero_grad()
        logits = model(x)
        loss = criterion(logits, y)
        loss.backward()
        optimizer.step()

        total_loss += loss.item() * x.size(0)
        correct += _accuracy_counts(logits, y)
        total += x.size(0)
    return total_loss / total, correct / total


def eval_epoch(model, loader, criterion, device, num_samples=None):
    # One pass over the validation batches; rows past num_samples are wrap-around filler
    model.eval()
    total_loss = 0.0
    correct = 0
    total = 0
    with torch.no_grad():
        for x, y in tqdm(loader, desc="val", leave=False):
            if num_samples is not None:
                keep = num_samples - total
                if keep <= 0:
                    break
                x, y = x[:keep], y[:keep]
            x = x.to(device)
            y = y.to(device)
            logits = model(x)
            loss = criterion(logits, y)
            total_loss += loss.item() * x.size(0)
            correct += _accuracy_counts(logits, y)
            total += x.size(0)
    return total_loss / total, correct / total


def build_datasets(df, label_to_index, augment=AUGMENT):
    common = dict(
        sample_rate=SAMPLE_RATE,
        window_size_ms=WINDOW_SIZE_MS,
        step_size_ms=STEP_SIZE_MS,
        duration=CLIP_DURATION,
    )
    train_ds = SpeechCommandsDataset(
        df[df["split"] == "train"],
        label_to_index,
        augment=augment,
        time_shift_max_fraction=TIME_SHIFT_MAX_FRACTION,
        noise_std=NOISE_STD,
        time_mask_param=TIME_MASK_PARAM,
        freq_mask_param=FREQ_MASK_PARAM,
        num_time_masks=NUM_TIME_MASKS,
        num_freq_masks=NUM_FREQ_MASKS,
        **common,
    )
    val_ds = SpeechCommandsDataset(
        df[df["split"] == "validation"],
        label_to_index,
        augment=False,
        **common,
    )
    return train_ds, val_ds


def fit(
    model,
    train_loader,
    val_loader,
    device,
    epochs=EPOCHS,
    learning_rate=LEARNING_RATE,
    weight_decay=WEIGHT_DECAY,
    on_improve=None,
):
    """Train with early stopping; returns the per-epoch history."""
    criterion = torch.nn.CrossEntropyLoss()
    optimizer = torch.optim.Adam(model.parameters(), lr=learning_rate, weight_decay=weight_decay)
    scheduler = ReduceLROnPlateau(
        optimizer, mode="min", patience=SCHEDULER_PATIENCE, factor=SCHEDULER_FACTOR
    )

    history = []
    best_acc = -1.0
    best_loss = float("inf")
    patience = 0
    for epoch in range(1, epochs + 1):
        train_loss, train_acc = train_epoch(
            model, train_loader, optimizer, criterion, device
        )
        val_loss, val_acc = eval_epoch(
            model, val_loader, criterion, device, num_samples=len(val_loader.dataset)
        )
        scheduler.step(val_loss)
        current_lr = optimizer.param_groups[0]["lr"]
        history.append(
            {
                "epoch": epoch,
                "train_loss": train_loss,
                "train_acc": train_acc,
                "val_loss": val_loss,
                "val_acc": val_acc,
                "lr": current_lr,
            }
        )
        print(
            f"epoch={epoch} train_loss={train_loss:.4f} "
            f"train_acc={train_acc:.3f} val_loss={val_loss:.4f} "
            f"val_acc={val_acc:.3f} lr={current_lr:.2e}"
        )
        if val_acc > best_acc:
            best_acc = val_acc
            if on_improve is not None:
                on_improve(model, epoch, val_acc)

        if val_loss < best_loss - 1e-4:
            best_loss = val_loss
            patience = 0
        else:
            patience += 1
            if patience >= EARLY_STOPPING_PATIENCE:
                print("early stopping triggered")
                break
    return history


def main():
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    set_seed(SEED)

    # One label mapping for every split
    df = load_metadata(CSV_PATH)
    label_to_index = build_label_mapping(df["label"].tolist())
    logger.info("Loaded %d files across %d labels.", len(df), len(label_to_index))

    train_ds, val_ds = build_datasets(df, label_to_index)
    if len(train_ds) == 0 or len(val_ds) == 0:
        raise ValueError("train and validation splits must both be non-empty")

    # Full padded batches; every batch padded to at least one clip's frames
    min_frames, _ = spectrogram_shape(
        int(SAMPLE_RATE * CLIP_DURATION), SAMPLE_RATE, WINDOW_SIZE_MS, STEP_SIZE_MS
    )
    train_loader = make_loader(
        train_ds,
        BATCH_SIZE,
        steps=STEPS_PER_EPOCH,
        shuffle=True,
        seed=SEED,
        min_frames=min_frames,
        num_workers=NUM_WORKERS,
    )
    val_loader = make_loader(
        val_ds,
        BATCH_SIZE,
        min_frames=min_frames,
        num_workers=NUM_WORKERS,
    )

    device = torch.device("cuda" if torch.cuda.is_available() else "cpu")
    model = SpeechCNN(num_classes=len(label_to_index)).to(device)
    logger.info("Training on %s (%d train / %d val files).", device, len(train_ds), len(val_ds))

    def save_checkpoint(model, epoch, val_acc):
        # Save weights and label mapping together
        model_dir = os.path.dirname(MODEL_PATH)
        if model_dir:
            os.makedirs(model_dir, exist_ok=True)
        torch.save(model.state_dict(), MODEL_PATH)
        save_label_mapping(LABELS_PATH, label_to_index)
        logger.info("Checkpoint saved at epoch %d (val_acc=%.3f).", epoch, val_acc)

    history = fit(model, train_loader, val_loader, device, on_improve=save_checkpoint)

    history_df = pd.DataFrame(history)
    history_dir = os.path.dirname(HISTORY_PATH)
    if history_dir:
        os.makedirs(history_dir, exist_ok=True)
    history_df.to_csv(HISTORY_PATH, index=False)

    # Final summary of the best validation accuracy
    print(f"best_val_acc={history_df['val_acc'].max():.3f}")


if __name__ == "__main__":
    main()
