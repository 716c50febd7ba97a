import json
import math
from functools import lru_cache, partial
import numpy as np
import torch
from torch.utils.data import DataLoader, Dataset, Sampler
from config import SAMPLE_RATE, STEP_SIZE_MS, WINDOW_SIZE_MS
from preprocessing.audio_features import (
    add_noise,
    compute_spectrogram,
    load_audio,
    mask_spectrogram,
    random_time_shift,
)


def build_label_mapping(labels):
    # Map string labels to stable integer indices
    unique = sorted(set(labels))
    return {label: idx for idx, label in enumerate(unique)}


def one_hot(index, num_classes):
    if not 0 <= index < num_classes:
        raise ValueError(f"class index {index} out of range for {num_classes} classes")
    vec = np.zeros(num_classes, dtype=np.float32)
    vec[index] = 1.0
    return vec


class SpeechCommandsDataset(Dataset):
    """Lazily loads one clip per item and returns (spectrogram, one-hot label).

    Spectrograms are ``(time_chunks, freq_bins, 1)``; time length varies with
    the clip and is padded per batch by ``pad_collate``.
    """

    def __init__(
        self,
        dataframe,
        label_to_index,
        sample_rate=SAMPLE_RATE,
        window_size_ms=WINDOW_SIZE_MS,
        step_size_ms=STEP_SIZE_MS,
        duration=None,
        augment=False,
        time_shift_max_fraction=0.1,
        noise_std=0.005,
        time_mask_param=10,
        freq_mask_param=8,
        num_time_masks=1,
        num_freq_masks=1,
    ):
        self.df = dataframe.reset_index(drop=True)
        self.label_to_index = label_to_index
        self.num_classes = len(label_to_index)
        self.sample_rate = sample_rate
        self.window_size_ms = window_size_ms
        self.step_size_ms = step_size_ms
        self.duration = duration
        self.augment = augment
        self.time_shift_max_fraction = time_shift_max_fraction
        self.noise_std = noise_std
        self.time_mask_param = time_mask_param
        self.freq_mask_param = freq_mask_param
        self.num_time_masks = num_time_masks
        self.num_freq_masks = num_freq_masks

        unknown = set(self.df["label"]) - set(label_to_index)
        if unknown:
            raise ValueError(f"labels missing from mapping: {sorted(unknown)}")

    def __len__(self):
        return len(self.df)

    def __getitem__(self, idx):
        row = self.df.iloc[idx]
        y, sr = load_audio(
            row["file_path"],
            target_sr=self.sample_rate,
            duration=self.duration,
        )
        if self.augment:
            y = random_time_shift(y, self.time_shift_max_fraction)
            y = add_noise(y, self.noise_std)

        feat = compute_spectrogram(
            y,
            sr,
            window_size_ms=self.window_size_ms,
            step_size_ms=self.step_size_ms,
        )
        if self.augment:
            feat = mask_spectrogram(
                feat,
                self.time_mask_param,
                self.freq_mask_param,
                num_time_masks=self.num_time_masks,
                num_freq_masks=self.num_freq_masks,
            )

        label = one_hot(self.label_to_index[row["label"]], self.num_classes)
        return torch.from_numpy(np.ascontiguousarray(feat, dtype=np.float32)), torch.from_numpy(label)


def pad_collate(batch, min_frames=0):
    # Zero-pad the time axis to the longest item, then stack
    specs, labels = zip(*batch)
    max_frames = max(min_frames, max(spec.shape[0] for spec in specs))
    padded = []
    for spec in specs:
        pad = max_frames - spec.shape[0]
        if pad > 0:
            filler = spec.new_zeros((pad,) + tuple(spec.shape[1:]))
            spec = torch.cat([spec, filler], dim=0)
        padded.append(spec)
    return torch.stack(padded), torch.stack(labels)


class RepeatSampler(Sampler):
    """Yields exactly ``num_samples`` indices, wrapping around the dataset.

    With ``shuffle`` each pass over the data gets a fresh permutation.
    """

    def __init__(self, data_source, num_samples=None, shuffle=False, seed=None):
        if len(data_source) == 0:
            raise ValueError("cannot sample from an empty dataset")
        self.data_source = data_source
        self._num_samples = num_samples
        self.shuffle = shuffle
        self.seed = seed
        self.epoch = 0

    @property
    def num_samples(self):
        if self._num_samples is None:
            return len(self.data_source)
        return self._num_samples

    def __len__(self):
        return self.num_samples

    def __iter__(self):
        n = len(self.data_source)
        generator = torch.Generator()
        if self.seed is not None:
            generator.manual_seed(self.seed + self.epoch)
        else:
            generator.seed()
        self.epoch += 1

        remaining = self.num_samples
        while remaining > 0:
            if self.shuffle:
                order = torch.randperm(n, generator=generator).tolist()
            else:
                order = list(range(n))
            chunk = order[:remaining]
            yield from chunk
            remaining -= len(chunk)


def make_loader(
    dataset,
    batch_size,
    steps=None,
    shuffle=False,
    seed=None,
    min_frames=0,
    num_workers=0,
):
    """DataLoader of full, padded batches.

    ``steps`` batches are produced; by default enough to cover the dataset
    once, with the last batch topped up from the start of the data.
    """
    if steps is None:
        steps = math.ceil(len(dataset) / batch_size)
    sampler = RepeatSampler(
        dataset,
        num_samples=steps * batch_size,
        shuffle=shuffle,
        seed=seed,
    )
    return DataLoader(
        dataset,
        batch_size=batch_size,
        sampler=sampler,
        collate_fn=partial(pad_collate, min_frames=min_frames),
        num_workers=num_workers,
    )


def save_label_mapping(path, label_to_index):
    # Persist label mapping alongside the model weights
    with open(path, "w", encoding="utf-8") as f:
        json.dump(label_to_index, f, indent=2, sort_keys=True)


@lru_cache(maxsize=4)
def load_label_mapping(path):
    # Load label mapping for inference/evaluation
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    return {k: int(v) for k, v in data.items()}
