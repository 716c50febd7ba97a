import os
from functools import lru_cache
import torch
from model.cnn import SpeechCNN
from config import MODEL_PATH, NUM_CLASSES


@lru_cache(maxsize=1)
def load_model(num_classes=NUM_CLASSES, model_path=None):
    # Build the model and load trained weights
    model_path = model_path or MODEL_PATH
    if not os.path.exists(model_path):
        raise FileNotFoundError(
            f"Model file not found: {model_path}. Train the model first."
        )
    device = torch.device("cuda" if torch.cuda.is_available() else "cpu")
    model = SpeechCNN(num_classes=num_classes)
    model.load_state_dict(torch.load(model_path, map_location=device, weights_only=True))
    model.to(device)
    model.eval()
    return model, device
