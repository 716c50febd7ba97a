import hashlib
import logging
import os
import re
import tarfile
import urllib.request
import pandas as pd
from tqdm import tqdm
from config import (
    ARCHIVE_PATH,
    BACKGROUND_NOISE_DIR,
    CSV_PATH,
    DATA_URL,
    DATASET_ROOT,
    TESTING_PERCENTAGE,
    VALIDATION_PERCENTAGE,
)

logger = logging.getLogger(__name__)

MAX_NUM_WAVS_PER_CLASS = 2**27 - 1
VALIDATION_LIST = "validation_list.txt"
TESTING_LIST = "testing_list.txt"


class DownloadProgressBar(tqdm):
    """Progress bar driven by urlretrieve's reporthook."""

    def update_to(self, b=1, bsize=1, tsize=None):
        if tsize is not None:
            self.total = tsize
        self.update(b * bsize - self.n)


def download_archive(url=DATA_URL, archive_path=ARCHIVE_PATH):
    # Reuse a previously downloaded archive
    if os.path.exists(archive_path):
        logger.info("Archive already downloaded: %s", archive_path)
        return archive_path

    archive_dir = os.path.dirname(archive_path)
    if archive_dir:
        os.makedirs(archive_dir, exist_ok=True)
    partial_path = archive_path + ".part"
    with DownloadProgressBar(unit="B", unit_scale=True, miniters=1, desc=url.split("/")[-1]) as t:
        urllib.request.urlretrieve(url, filename=partial_path, reporthook=t.update_to)
    os.replace(partial_path, archive_path)
    logger.info("Downloaded %s", archive_path)
    return archive_path


def _has_class_dirs(path):
    if not os.path.isdir(path):
        return False
    for entry in os.listdir(path):
        if _is_class_dir(path, entry):
            return True
    return False


def _is_class_dir(root, entry):
    # A label directory holds .wav files directly
    if entry.startswith((".", "_")):
        return False
    path = os.path.join(root, entry)
    if not os.path.isdir(path):
        return False
    with os.scandir(path) as it:
        return any(e.is_file() and e.name.lower().endswith(".wav") for e in it)


def extract_archive(archive_path=ARCHIVE_PATH, dataset_root=DATASET_ROOT):
    if _has_class_dirs(dataset_root):
        logger.info("Dataset already extracted: %s", dataset_root)
        return dataset_root
    if not os.path.exists(archive_path):
        raise FileNotFoundError(
            f"archive not found: {archive_path}. Download it first with "
            "scripts/prepare_speech_commands.py."
        )

    os.makedirs(dataset_root, exist_ok=True)
    logger.info("Extracting %s -> %s", archive_path, dataset_root)
    with tarfile.open(archive_path, "r:*") as tar:
        if hasattr(tarfile, "data_filter"):
            tar.extractall(dataset_root, filter="data")
        else:
            tar.extractall(dataset_root)
    return dataset_root


def find_dataset_root(dataset_root):
    if not os.path.exists(dataset_root):
        raise FileNotFoundError(
            f"dataset root not found: {dataset_root}. "
            "Make sure the speech commands archive is downloaded and extracted."
        )

    if _has_class_dirs(dataset_root):
        return dataset_root

    for entry in sorted(os.listdir(dataset_root)):
        candidate = os.path.join(dataset_root, entry)
        if _has_class_dirs(candidate):
            return candidate

    raise FileNotFoundError(
        "no label directories found. Expected one subdirectory of .wav files "
        f"per word under {dataset_root} or a nested folder."
    )


def _read_list(path):
    if not os.path.exists(path):
        return None
    with open(path, "r", encoding="utf-8") as f:
        return {line.strip().replace("\\", "/") for line in f if line.strip()}


def which_set(
    file_path,
    validation_percentage=VALIDATION_PERCENTAGE,
    testing_percentage=TESTING_PERCENTAGE,
):
    """Stable split for a file, keyed on the speaker id in its name.

    Everything after ``_nohash_`` is ignored so all recordings of one speaker
    land in the same split.
    """
    base_name = os.path.basename(file_path)
    hash_name = re.sub(r"_nohash_.*$", "", base_name)
    hash_name_hashed = hashlib.sha1(hash_name.encode("utf-8")).hexdigest()
    percentage_hash = (
        (int(hash_name_hashed, 16) % (MAX_NUM_WAVS_PER_CLASS + 1))
        * (100.0 / MAX_NUM_WAVS_PER_CLASS)
    )
    if percentage_hash < validation_percentage:
        return "validation"
    if percentage_hash < (testing_percentage + validation_percentage):
        return "test"
    return "train"


def list_samples(dataset_root):
    dataset_root = find_dataset_root(dataset_root)
    validation = _read_list(os.path.join(dataset_root, VALIDATION_LIST))
    testing = _read_list(os.path.join(dataset_root, TESTING_LIST))

    rows = []
    for label in sorted(os.listdir(dataset_root)):
        if label == BACKGROUND_NOISE_DIR or not _is_class_dir(dataset_root, label):
            continue
        label_dir = os.path.join(dataset_root, label)
        for filename in sorted(os.listdir(label_dir)):
            if not filename.lower().endswith(".wav"):
                continue
            relative = f"{label}/{filename}"
            if validation is not None and testing is not None:
                if relative in testing:
                    split = "test"
                elif relative in validation:
                    split = "validation"
                else:
                    split = "train"
            else:
                split = which_set(relative)
            rows.append(
                {
                    "file_path": os.path.join(label_dir, filename),
                    "label": label,
                    "split": split,
                }
            )
    return rows


def build_csv(dataset_root, output_csv):
    output_dir = os.path.dirname(output_csv)
    if output_dir:
        os.makedirs(output_dir, exist_ok=True)

    rows = list_samples(dataset_root)
    if not rows:
        raise FileNotFoundError(f"no .wav files found under {dataset_root}")

    df = pd.DataFrame(rows, columns=["file_path", "label", "split"])
    df.to_csv(output_csv, index=False)

    print(f"wrote {output_csv} ({len(df)} files, {df['label'].nunique()} labels)")
    return df


def prepare(
    url=DATA_URL,
    archive_path=ARCHIVE_PATH,
    dataset_root=DATASET_ROOT,
    output_csv=CSV_PATH,
):
    if not _has_class_dirs(dataset_root):
        download_archive(url, archive_path)
        extract_archive(archive_path, dataset_root)
    return build_csv(dataset_root, output_csv)
