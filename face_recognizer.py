"""Command-line entry: identify the face in an image against a registered gallery."""

from __future__ import annotations

import argparse
import json
import time

from pathlib import Path

import cv2

from faceid.config import DEFAULT_DET_SIZE, DEFAULT_EMBEDDING_DIM, DEFAULT_INPUT_SIZE, DEFAULT_THRESHOLD
from faceid.errors import PreprocessError
from faceid.face.preprocess import load_image
from faceid.face.recognizer import FaceRecognizer
from faceid.utils.draw import draw_result
from faceid.utils.log import get_logger, set_level
from faceid.utils.serializer import serialize_result

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Identify a face against registered embeddings")
    parser.add_argument("input", help="Input image path")
    parser.add_argument(
        "--gallery",
        "-g",
        required=True,
        help="Registered embeddings: JSON list/object or CSV with identity,embedding columns",
    )
    parser.add_argument("--model", "-m", required=True, help="Embedding model (.onnx or TorchScript .pt)")
    parser.add_argument("--input-size", type=int, default=DEFAULT_INPUT_SIZE, help="Model input side (112 or 160)")
    parser.add_argument("--embedding-dim", type=int, default=DEFAULT_EMBEDDING_DIM, help="Embedding length")
    parser.add_argument(
        "--threshold", "-t", type=float, default=DEFAULT_THRESHOLD, help="Euclidean distance acceptance bound"
    )
    parser.add_argument("--threads", type=int, default=None, help="Inference runtime threads")
    parser.add_argument(
        "--device",
        type=str,
        default="auto",
        choices=["auto", "cpu", "gpu"],
        help="Compute device (auto: GPU when CUDA is available)",
    )
    parser.add_argument("--timeout", type=float, default=None, help="Inference timeout in seconds")
    parser.add_argument("--no-detect", action="store_true", help="Input is already a cropped face; skip detection")
    parser.add_argument("--det-size", type=int, default=DEFAULT_DET_SIZE, help="InsightFace detector input size")
    parser.add_argument("--output-json", "-j", default=None, help="Write the result as JSON")
    parser.add_argument("--output-image", "-o", default=None, help="Write an annotated copy of the input")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging (nearest candidates on no match)")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    if args.verbose:
        set_level("DEBUG")

    locator = None
    if not args.no_detect:
        from faceid.face.locator import InsightFaceLocator

        locator = InsightFaceLocator(det_size=int(args.det_size), device=str(args.device))

    with FaceRecognizer(
        model_path=args.model,
        threshold=float(args.threshold),
        input_size=int(args.input_size),
        embedding_dim=int(args.embedding_dim),
        num_threads=args.threads,
        device=str(args.device),
        timeout=args.timeout,
        locator=locator,
    ) as recognizer:
        count = recognizer.load_embeddings_file(args.gallery, expected_dim=int(args.embedding_dim))
        logger.info(f"Gallery: {count} embeddings, {recognizer.get_gallery_info()['identities']} identities")

        result = recognizer.recognize_file(args.input)

    # Decoded again only for the outputs; an unreadable input has already
    # been reported as a preprocess failure.
    image = None
    if args.output_json or args.output_image:
        try:
            image = load_image(args.input)
        except PreprocessError:
            image = None

    if result.matched:
        logger.info(f"Identity: {result.identity} (distance {result.distance:.4f})")
    elif result.failed:
        logger.warning(f"Recognition failed at {result.failure.stage}: {result.failure.reason}")
    else:
        logger.info("No registered match")

    if args.output_json:
        payload = serialize_result(result, image_shape=image.shape[:2] if image is not None else None)
        payload["input"] = str(args.input)
        Path(args.output_json).write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
        logger.info(f"Wrote {args.output_json}")

    if args.output_image:
        if image is None:
            logger.error(f"Cannot annotate unreadable input {args.input}")
        elif not cv2.imwrite(str(args.output_image), draw_result(image, result)):
            logger.error(f"Failed to write {args.output_image}")
        else:
            logger.info(f"Wrote {args.output_image}")

    return 0 if result.matched else 1


if __name__ == "__main__":
    st = time.time()
    code = main()
    logger.info(f"Elapsed: {time.time() - st:.2f} s")
    raise SystemExit(code)
