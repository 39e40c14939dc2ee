"""Inference engine adapters.

The recognizer treats the network as an opaque function from a (1, H, W, 3)
tensor to an embedding. Engines declare their input/output shapes up front so
callers can validate tensors before the first run.
"""
from __future__ import annotations

from pathlib import Path
from typing import Optional, Protocol, Tuple, Union

import numpy as np
import torch

from faceid.config import DEFAULT_EMBEDDING_DIM, DEFAULT_INPUT_SIZE
from faceid.utils.log import get_logger, suppress_fds

logger = get_logger(__name__)

ONNX_SUFFIXES = (".onnx",)
TORCHSCRIPT_SUFFIXES = (".pt", ".pth", ".ts", ".torchscript")


class InferenceEngine(Protocol):
    input_shape: Tuple[int, ...]
    output_shape: Tuple[int, ...]

    def run(self, tensor: np.ndarray) -> np.ndarray: ...

    def close(self) -> None: ...


def resolve_device(device: str = "auto") -> str:
    """Map 'auto'/'cpu'/'gpu'/'cuda[:n]' onto 'cpu' or a CUDA device string."""
    dev = str(device).strip().lower()
    if dev == "auto":
        try:
            return "cuda" if torch.cuda.is_available() else "cpu"
        except Exception:
            return "cpu"
    if dev in {"gpu", "cuda"}:
        return "cuda" if torch.cuda.is_available() else "cpu"
    if dev == "cpu":
        return "cpu"
    # Allow explicit torch device strings like "cuda:1".
    return str(device)


def _static_dim(value, fallback: int) -> int:
    # ONNX dynamic axes come back as None or a symbolic name.
    if isinstance(value, (int, np.integer)) and int(value) > 0:
        return int(value)
    return int(fallback)


class OnnxEngine:
    """ONNX Runtime session wrapper.

    Accepts NHWC models directly. NCHW models (input dim 1 == 3, the layout
    InsightFace ArcFace exports use) are transposed internally so the declared
    `input_shape` is always (1, H, W, 3).
    """

    def __init__(
        self,
        model_path: Union[str, Path],
        num_threads: Optional[int] = None,
        device: str = "auto",
        input_size: int = DEFAULT_INPUT_SIZE,
        embedding_dim: int = DEFAULT_EMBEDDING_DIM,
    ) -> None:
        import onnxruntime as ort

        self.model_path = Path(model_path)
        self.device = resolve_device(device)

        opts = ort.SessionOptions()
        if num_threads is not None:
            opts.intra_op_num_threads = int(num_threads)

        available = list(ort.get_available_providers())
        if self.device.startswith("cuda") and "CUDAExecutionProvider" in available:
            providers = ["CUDAExecutionProvider", "CPUExecutionProvider"]
        else:
            providers = ["CPUExecutionProvider"]

        with suppress_fds():
            self._session = ort.InferenceSession(str(self.model_path), sess_options=opts, providers=providers)

        inp = self._session.get_inputs()[0]
        out = self._session.get_outputs()[0]
        self._input_name = inp.name
        self._output_name = out.name

        raw_in = list(inp.shape)
        if len(raw_in) != 4:
            raise ValueError(f"Expected a 4D image input, got {raw_in} in {self.model_path}")
        self._channels_first = raw_in[1] == 3
        if self._channels_first:
            h, w = raw_in[2], raw_in[3]
        else:
            h, w = raw_in[1], raw_in[2]
        self.input_shape: Tuple[int, ...] = (
            1,
            _static_dim(h, input_size),
            _static_dim(w, input_size),
            3,
        )

        raw_out = list(out.shape)
        dim = _static_dim(raw_out[-1] if raw_out else None, embedding_dim)
        self.output_shape: Tuple[int, ...] = (1, dim)

        logger.info(
            f"Loaded ONNX model {self.model_path.name}: input={inp.name}{raw_in} output={out.name}{raw_out} "
            f"providers={providers}"
        )

    def run(self, tensor: np.ndarray) -> np.ndarray:
        if self._session is None:
            raise RuntimeError("ONNX session is closed")
        x = np.asarray(tensor, dtype=np.float32)
        if self._channels_first:
            x = np.ascontiguousarray(x.transpose(0, 3, 1, 2))
        outputs = self._session.run([self._output_name], {self._input_name: x})
        return np.asarray(outputs[0])

    def close(self) -> None:
        # ORT frees native memory when the session is garbage-collected.
        self._session = None


class TorchScriptEngine:
    """TorchScript model wrapper (e.g. a traced facenet-pytorch InceptionResnetV1).

    TorchScript carries no shape metadata, so input size and embedding length
    are configured explicitly. Input is permuted NHWC -> NCHW before the forward pass.
    """

    def __init__(
        self,
        model_path: Union[str, Path],
        input_size: int = DEFAULT_INPUT_SIZE,
        embedding_dim: int = DEFAULT_EMBEDDING_DIM,
        num_threads: Optional[int] = None,
        device: str = "auto",
    ) -> None:
        self.model_path = Path(model_path)
        self.device = resolve_device(device)
        if num_threads is not None:
            torch.set_num_threads(int(num_threads))

        self._model = torch.jit.load(str(self.model_path), map_location=self.device)
        self._model.eval()

        size = int(input_size)
        self.input_shape: Tuple[int, ...] = (1, size, size, 3)
        self.output_shape: Tuple[int, ...] = (1, int(embedding_dim))
        logger.info(f"Loaded TorchScript model {self.model_path.name} on {self.device}: input={self.input_shape}")

    def run(self, tensor: np.ndarray) -> np.ndarray:
        if self._model is None:
            raise RuntimeError("TorchScript model is closed")
        x = torch.from_numpy(np.ascontiguousarray(tensor, dtype=np.float32))
        x = x.permute(0, 3, 1, 2).contiguous().to(self.device)
        with torch.inference_mode():
            y = self._model(x)
        return y.detach().cpu().numpy()

    def close(self) -> None:
        self._model = None
        if self.device.startswith("cuda"):
            try:
                torch.cuda.empty_cache()
            except Exception:
                pass


def create_engine(
    model_path: Union[str, Path],
    input_size: int = DEFAULT_INPUT_SIZE,
    embedding_dim: int = DEFAULT_EMBEDDING_DIM,
    num_threads: Optional[int] = None,
    device: str = "auto",
) -> InferenceEngine:
    """Build an engine for `model_path`, picking the runtime by file suffix."""
    fp = Path(model_path)
    suffix = fp.suffix.lower()
    if suffix in ONNX_SUFFIXES:
        return OnnxEngine(
            fp,
            num_threads=num_threads,
            device=device,
            input_size=input_size,
            embedding_dim=embedding_dim,
        )
    if suffix in TORCHSCRIPT_SUFFIXES:
        return TorchScriptEngine(
            fp,
            input_size=input_size,
            embedding_dim=embedding_dim,
            num_threads=num_threads,
            device=device,
        )
    raise ValueError(
        f"Unsupported model format {suffix!r} for {fp}. Use one of: {', '.join(ONNX_SUFFIXES + TORCHSCRIPT_SUFFIXES)}"
    )
