import numpy as np
import pytest
import torch

from model import evaluate as evaluate_module
from model.dataset import make_loader, one_hot
from preprocessing.visualization import plot_confusion_matrix, plot_spectrogram


class LabelledItems(torch.utils.data.Dataset):
    def __init__(self, targets, num_classes=3):
        self.targets = targets
        self.num_classes = num_classes

    def __len__(self):
        return len(self.targets)

    def __getitem__(self, idx):
        target = self.targets[idx]
        # The "spectrogram" carries its own label so the oracle can read it back
        x = torch.full((2, 2, 1), float(target))
        return x, torch.from_numpy(one_hot(target, self.num_classes))


class OracleModel(torch.nn.Module):
    def forward(self, x):
        targets = x[:, 0, 0, 0].long()
        return torch.nn.functional.one_hot(targets, 3).float() * 10


def test_evaluate_drops_wrapped_rows():
    ds = LabelledItems([0, 1, 2, 1, 0])
    loader = make_loader(ds, batch_size=4)
    acc, y_true, y_pred = evaluate_module.evaluate(
        OracleModel(), loader, torch.device("cpu"), num_samples=len(ds)
    )
    assert acc == 1.0
    assert y_true.tolist() == [0, 1, 2, 1, 0]
    assert y_pred.tolist() == [0, 1, 2, 1, 0]


def test_class_report():
    y_true = np.array([0, 0, 1, 2])
    y_pred = np.array([0, 1, 1, 2])
    cm, per_class = evaluate_module.class_report(y_true, y_pred, ["go", "no", "up"])

    assert cm.tolist() == [[1, 1, 0], [0, 1, 0], [0, 0, 1]]
    assert per_class == {"go": 0.5, "no": 1.0, "up": 1.0}


def test_class_report_handles_missing_class():
    cm, per_class = evaluate_module.class_report(np.array([0]), np.array([0]), ["a", "b"])
    assert cm.shape == (2, 2)
    assert per_class["b"] == 0.0


def test_plot_confusion_matrix(tmp_path):
    cm = np.array([[3, 1], [0, 4]])
    path = plot_confusion_matrix(cm, ["yes", "no"], str(tmp_path / "plots" / "cm.png"))
    with open(path, "rb") as f:
        assert f.read(4) == b"\x89PNG"


def test_plot_confusion_matrix_shape_mismatch(tmp_path):
    with pytest.raises(ValueError):
        plot_confusion_matrix(np.zeros((2, 2)), ["a", "b", "c"], str(tmp_path / "cm.png"))


def test_plot_spectrogram(tmp_path):
    path = plot_spectrogram(np.random.rand(99, 161, 1), str(tmp_path / "spec.png"))
    with open(path, "rb") as f:
        assert f.read(4) == b"\x89PNG"
