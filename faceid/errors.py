from __future__ import annotations

from typing import Optional


class RecognitionError(Exception):
    """Failure of one recognition stage; recovered by the recognizer."""

    stage = "recognize"

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class PreprocessError(RecognitionError):
    stage = "preprocess"


class ShapeMismatchError(RecognitionError):
    """Tensor shape differs from the shape the model declares (configuration defect)."""

    stage = "extract"


class ExtractionFailure(RecognitionError):
    stage = "extract"


class ExtractionTimeoutError(ExtractionFailure):
    pass


class ParseError(ValueError):
    """A registered-embedding record could not be parsed into a vector."""
