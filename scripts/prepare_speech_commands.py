import argparse
import logging
import os
import sys

# Ensure repo root is on sys.path for local imports
ROOT_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

from config import ARCHIVE_PATH, CSV_PATH, DATA_URL, DATASET_ROOT
from preprocessing.prepare_speech_commands import build_csv, prepare


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Download Speech Commands and write the file/label CSV."
    )
    parser.add_argument("--url", default=DATA_URL)
    parser.add_argument("--archive", default=ARCHIVE_PATH)
    parser.add_argument("--dataset-root", default=DATASET_ROOT)
    parser.add_argument("--output-csv", default=CSV_PATH)
    parser.add_argument(
        "--skip-download",
        action="store_true",
        help="only enumerate an already extracted dataset",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    if args.skip_download:
        build_csv(args.dataset_root, args.output_csv)
    else:
        prepare(
            url=args.url,
            archive_path=args.archive,
            dataset_root=args.dataset_root,
            output_csv=args.output_csv,
        )


if __name__ == "__main__":
    main()
