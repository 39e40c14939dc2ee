"""Face identification by embedding nearest-neighbour search.

`FaceRecognizer` composes preprocessing, embedding extraction and
threshold-gated matching against a registered gallery.
"""
from __future__ import annotations

from faceid.errors import (
    ExtractionFailure,
    ExtractionTimeoutError,
    ParseError,
    PreprocessError,
    RecognitionError,
    ShapeMismatchError,
)
from faceid.face.recognizer import FaceRecognizer, RecognitionFailure, RecognitionResult

__all__ = [
    "ExtractionFailure",
    "ExtractionTimeoutError",
    "FaceRecognizer",
    "ParseError",
    "PreprocessError",
    "RecognitionError",
    "RecognitionFailure",
    "RecognitionResult",
    "ShapeMismatchError",
]
