import argparse
import logging
import os
import sys
ROOT_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)
from model.predict import predict
from preprocessing.visualization import plot_spectrogram


def main(argv=None):
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    parser = argparse.ArgumentParser(description="Print top word predictions for .wav files.")
    parser.add_argument("audio_paths", nargs="+")
    parser.add_argument("--top-k", type=int, default=3)
    parser.add_argument("--plot-dir", help="also save each file's spectrogram here")
    args = parser.parse_args(argv)

    for audio_path in args.audio_paths:
        data = predict(audio_path, top_k=args.top_k)
        spectrogram = data["spectrogram"]
        print("\nProcessing audio: " + audio_path)
        print("Spectrogram's shape: " + str(spectrogram["shape"]))
        print("Windows: " + str(len(data["spectrograms"])))
        print("\nTop predictions:")
        for prediction in data["top_k"]:
            print(f'• Prediction: {prediction["label"]} ({prediction["confidence"]*100:.1f}%)')
        if args.plot_dir:
            name = os.path.splitext(os.path.basename(audio_path))[0] + ".png"
            plot_spectrogram(spectrogram["features"], os.path.join(args.plot_dir, name))
        print("\n" + "="*50)


if __name__ == "__main__":
    main()
