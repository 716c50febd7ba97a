import os
import tarfile

import numpy as np
import pandas as pd
import pytest
import soundfile as sf

from preprocessing import prepare_speech_commands as prep


def _write_wav(path):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    sf.write(path, np.zeros(1600, dtype=np.float32), 16000)


def _make_tree(root, with_lists=False):
    files = [
        "yes/aaaa1111_nohash_0.wav",
        "yes/bbbb2222_nohash_0.wav",
        "no/aaaa1111_nohash_1.wav",
        "no/cccc3333_nohash_0.wav",
        "up/dddd4444_nohash_0.wav",
    ]
    for rel in files:
        _write_wav(os.path.join(root, rel))
    _write_wav(os.path.join(root, "_background_noise_", "white_noise.wav"))
    if with_lists:
        with open(os.path.join(root, "validation_list.txt"), "w", encoding="utf-8") as f:
            f.write("no/cccc3333_nohash_0.wav\n")
        with open(os.path.join(root, "testing_list.txt"), "w", encoding="utf-8") as f:
            f.write("up/dddd4444_nohash_0.wav\n")
    return files


def test_which_set_ignores_nohash_suffix():
    first = prep.which_set("yes/abcd1234_nohash_0.wav")
    assert first in {"train", "validation", "test"}
    assert prep.which_set("no/abcd1234_nohash_3.wav") == first


def test_which_set_is_deterministic():
    names = [f"go/{i:08x}_nohash_0.wav" for i in range(200)]
    assert [prep.which_set(n) for n in names] == [prep.which_set(n) for n in names]
    assert {prep.which_set(n) for n in names} == {"train", "validation", "test"}


def test_list_samples_skips_background_noise(tmp_path):
    files = _make_tree(str(tmp_path))
    rows = prep.list_samples(str(tmp_path))

    assert len(rows) == len(files)
    assert {row["label"] for row in rows} == {"yes", "no", "up"}
    assert all("_background_noise_" not in row["file_path"] for row in rows)


def test_list_samples_keeps_speaker_in_one_split(tmp_path):
    _make_tree(str(tmp_path))
    rows = prep.list_samples(str(tmp_path))
    speaker_splits = {
        row["split"] for row in rows if os.path.basename(row["file_path"]).startswith("aaaa1111")
    }
    assert len(speaker_splits) == 1


def test_list_samples_uses_split_lists(tmp_path):
    _make_tree(str(tmp_path), with_lists=True)
    rows = {os.path.basename(r["file_path"]): r["split"] for r in prep.list_samples(str(tmp_path))}

    assert rows["cccc3333_nohash_0.wav"] == "validation"
    assert rows["dddd4444_nohash_0.wav"] == "test"
    assert rows["bbbb2222_nohash_0.wav"] == "train"


def test_find_dataset_root_nested(tmp_path):
    nested = tmp_path / "speech_commands_v0.01"
    _make_tree(str(nested))
    assert prep.find_dataset_root(str(tmp_path)) == str(nested)


def test_find_dataset_root_missing(tmp_path):
    with pytest.raises(FileNotFoundError):
        prep.find_dataset_root(str(tmp_path / "nope"))
    with pytest.raises(FileNotFoundError):
        prep.find_dataset_root(str(tmp_path))


def test_build_csv(tmp_path):
    root = tmp_path / "data"
    _make_tree(str(root))
    output_csv = tmp_path / "out" / "speech_commands.csv"

    prep.build_csv(str(root), str(output_csv))
    df = pd.read_csv(output_csv)

    assert list(df.columns) == ["file_path", "label", "split"]
    assert len(df) == 5
    assert set(df["split"]) <= {"train", "validation", "test"}


def test_extract_archive(tmp_path):
    src = tmp_path / "src"
    _make_tree(str(src))
    archive = tmp_path / "speech.tar.gz"
    with tarfile.open(archive, "w:gz") as tar:
        for entry in os.listdir(src):
            tar.add(src / entry, arcname=entry)

    dest = tmp_path / "extracted"
    prep.extract_archive(str(archive), str(dest))
    assert os.path.exists(dest / "yes" / "aaaa1111_nohash_0.wav")


def test_extract_archive_missing(tmp_path):
    with pytest.raises(FileNotFoundError):
        prep.extract_archive(str(tmp_path / "missing.tar.gz"), str(tmp_path / "out"))


def test_download_archive_reuses_cached_file(tmp_path, monkeypatch):
    archive = tmp_path / "cached.tar.gz"
    archive.write_bytes(b"cached")

    def fail(*_args, **_kwargs):
        raise AssertionError("download should be skipped")

    monkeypatch.setattr(prep.urllib.request, "urlretrieve", fail)
    assert prep.download_archive("http://example.invalid/x.tar.gz", str(archive)) == str(archive)


def test_download_archive_fetches(tmp_path, monkeypatch):
    archive = tmp_path / "dl" / "speech.tar.gz"

    def fake_urlretrieve(url, filename, reporthook=None):
        with open(filename, "wb") as f:
            f.write(b"data")
        if reporthook is not None:
            reporthook(1, 4, 4)

    monkeypatch.setattr(prep.urllib.request, "urlretrieve", fake_urlretrieve)
    prep.download_archive("http://example.invalid/speech.tar.gz", str(archive))
    assert archive.read_bytes() == b"data"


def test_extract_archive_without_extraction_filters(tmp_path, monkeypatch):
    # Interpreters that predate tarfile extraction filters reject filter=
    src = tmp_path / "src"
    _make_tree(str(src))
    archive = tmp_path / "speech.tar.gz"
    with tarfile.open(archive, "w:gz") as tar:
        for entry in os.listdir(src):
            tar.add(src / entry, arcname=entry)

    original_extractall = tarfile.TarFile.extractall

    def extractall_without_filter(self, path=".", members=None, *, numeric_owner=False):
        return original_extractall(self, path, members, numeric_owner=numeric_owner)

    monkeypatch.delattr(tarfile, "data_filter", raising=False)
    monkeypatch.setattr(tarfile.TarFile, "extractall", extractall_without_filter)

    dest = tmp_path / "extracted"
    prep.extract_archive(str(archive), str(dest))
    assert os.path.exists(dest / "yes" / "aaaa1111_nohash_0.wav")
