import torch.nn as nn


class SpeechCNN(nn.Module):
    def __init__(self, num_classes=30, dropout=0.3):
        super().__init__()
        # Feature extractor over (B, 1, T, F) log spectrograms
        self.features = nn.Sequential(
            nn.Conv2d(1, 32, kernel_size=3, padding=1),
            nn.BatchNorm2d(32),
            nn.ReLU(),
            nn.MaxPool2d(2, ceil_mode=True),
            nn.Conv2d(32, 64, kernel_size=3, padding=1),
            nn.BatchNorm2d(64),
            nn.ReLU(),
            nn.MaxPool2d(2, ceil_mode=True),
            nn.Conv2d(64, 128, kernel_size=3, padding=1),
            nn.BatchNorm2d(128),
            nn.ReLU(),
            nn.AdaptiveAvgPool2d((1, 1)),
        )
        self.classifier = nn.Sequential(
            nn.Flatten(),
            nn.Dropout(dropout),
            nn.Linear(128, 128),
            nn.ReLU(),
            nn.Linear(128, num_classes),
        )

    def forward(self, x):
        # Batches come channels-last (B, T, F, 1); move the channel first
        if x.dim() != 4 or x.shape[-1] != 1:
            raise ValueError(f"expected (batch, time, freq, 1) input, got {tuple(x.shape)}")
        x = self.features(x.permute(0, 3, 1, 2))
        return self.classifier(x)
