import os

DATA_DIR = os.getenv("SPEECH_DATA_DIR", "data")
ARTIFACTS_DIR = os.getenv("SPEECH_ARTIFACTS_DIR", "artifacts")

DATA_URL = "http://download.tensorflow.org/data/speech_commands_v0.01.tar.gz"
ARCHIVE_PATH = os.path.join(DATA_DIR, "speech_commands_v0.01.tar.gz")
DATASET_ROOT = os.path.join(DATA_DIR, "speech_commands")
CSV_PATH = os.path.join(DATA_DIR, "speech_commands.csv")
BACKGROUND_NOISE_DIR = "_background_noise_"

MODEL_PATH = os.path.join(ARTIFACTS_DIR, "speech_cnn.pt")
LABELS_PATH = MODEL_PATH + ".labels.json"
HISTORY_PATH = os.path.join(ARTIFACTS_DIR, "history.csv")
CONFUSION_MATRIX_PATH = os.path.join(ARTIFACTS_DIR, "confusion_matrix.png")

LABELS = [
    "bed", "bird", "cat", "dog", "down", "eight", "five", "four", "go", "happy",
    "house", "left", "marvin", "nine", "no", "off", "on", "one", "right", "seven",
    "sheila", "six", "stop", "three", "tree", "two", "up", "wow", "yes", "zero",
]
NUM_CLASSES = len(LABELS)

# Hash split used when the list files are missing
VALIDATION_PERCENTAGE = 10
TESTING_PERCENTAGE = 10

SAMPLE_RATE = 16000
CLIP_DURATION = 1.0
WINDOW_SIZE_MS = 20
STEP_SIZE_MS = 10
EPS = 1e-10

# Waveform / spectrogram augmentation (training only)
AUGMENT = False
TIME_SHIFT_MAX_FRACTION = 0.1
NOISE_STD = 0.005
TIME_MASK_PARAM = 10
FREQ_MASK_PARAM = 8
NUM_TIME_MASKS = 1
NUM_FREQ_MASKS = 1

BATCH_SIZE = 64
EPOCHS = 10
STEPS_PER_EPOCH = None
LEARNING_RATE = 1e-3
WEIGHT_DECAY = 1e-5
EARLY_STOPPING_PATIENCE = 4
SCHEDULER_PATIENCE = 2
SCHEDULER_FACTOR = 0.5
NUM_WORKERS = int(os.getenv("NUM_WORKERS", "0"))
SEED = 67
