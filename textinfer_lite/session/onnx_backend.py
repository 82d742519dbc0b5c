"""
ONNX Runtime backend.

Centralizes ORT session creation so every pooled session is built with the
same options.
"""

import logging
import platform
from pathlib import Path
from typing import Dict, Optional, Sequence

import numpy as np
import onnxruntime as ort

from textinfer_lite.core.descriptors import ModelDescriptor
from textinfer_lite.core.errors import ConfigError
from textinfer_lite.session.backend import EngineBackend, GraphSignature

logger = logging.getLogger(__name__)

# "tensor(int64)" -> "int64"
_ORT_TYPE_PREFIX = "tensor("


def _ort_dtype(type_str: str) -> str:
    if type_str.startswith(_ORT_TYPE_PREFIX) and type_str.endswith(")"):
        return type_str[len(_ORT_TYPE_PREFIX):-1]
    return type_str


def _ort_shape(shape) -> tuple:
    # Symbolic dims come back as strings, unknown dims as None
    return tuple(dim if isinstance(dim, int) and dim > 0 else None for dim in shape)


def build_session(
    model_path: str,
    use_cuda: bool = False,
    use_coreml: bool = False,
    intra_op_num_threads: Optional[int] = None,
    # ↳ None -> keep ORT default (0 = auto)
    inter_op_num_threads: Optional[int] = 1,
) -> ort.InferenceSession:
    """Create an ONNX Runtime session with stable settings for serving.

    - Enables full graph optimizations.
    - Uses sequential execution; pooled sessions provide the parallelism.
    - Sets a moderate log level (WARNING+) to keep console noise low.
    - Chooses providers based on availability and request (CoreML > CUDA > CPU).

    Args:
        model_path: Path to ONNX model file
        use_cuda: Request CUDA execution if available
        use_coreml: Request CoreML execution on Apple Silicon
        intra_op_num_threads: Parallelism within single operator (None=auto)
        inter_op_num_threads: Parallelism across operators (1=sequential)

    Returns:
        Configured ORT InferenceSession
    """
    so = ort.SessionOptions()

    so.graph_optimization_level = ort.GraphOptimizationLevel.ORT_ENABLE_ALL
    so.execution_mode = ort.ExecutionMode.ORT_SEQUENTIAL
    # 0=VERBOSE, 1=INFO, 2=WARNING, 3=ERROR, 4=FATAL
    so.log_severity_level = 2

    if intra_op_num_threads is not None:
        so.intra_op_num_threads = int(intra_op_num_threads)
    if inter_op_num_threads is not None:
        so.inter_op_num_threads = int(inter_op_num_threads)

    available = set(ort.get_available_providers())
    providers = []

    is_apple_silicon = platform.system() == "Darwin" and platform.machine() == "arm64"

    if use_coreml or (is_apple_silicon and not use_cuda):
        if "CoreMLExecutionProvider" in available:
            providers.append("CoreMLExecutionProvider")
            logger.info("CoreML provider enabled for Apple Silicon acceleration")
        elif use_coreml:
            logger.warning("CoreML requested but not available")

    if use_cuda and "CUDAExecutionProvider" in available:
        providers.append("CUDAExecutionProvider")
        logger.debug("CUDA provider enabled")
    elif use_cuda:
        logger.warning(
            "CUDA requested but not available; available_providers=%s",
            sorted(available),
        )

    # Always include CPU as fallback
    providers.append("CPUExecutionProvider")

    logger.debug(
        "ORT options -> providers=%s, graph_opt=%s, intra=%s, inter=%s",
        providers,
        getattr(so.graph_optimization_level, "name", so.graph_optimization_level),
        intra_op_num_threads if intra_op_num_threads is not None else "auto",
        inter_op_num_threads if inter_op_num_threads is not None else "auto",
    )

    return ort.InferenceSession(model_path, sess_options=so, providers=providers)


class OnnxRuntimeBackend(EngineBackend):
    """EngineBackend running models with ONNX Runtime.

    Attributes:
        use_cuda: Request the CUDA execution provider
        use_coreml: Request the CoreML execution provider
        intra_op_num_threads: Threads per operator for each session
        inter_op_num_threads: Threads across operators for each session
    """

    def __init__(
        self,
        use_cuda: bool = False,
        use_coreml: bool = False,
        intra_op_num_threads: Optional[int] = None,
        inter_op_num_threads: Optional[int] = 1,
    ):
        self.use_cuda = use_cuda
        self.use_coreml = use_coreml
        self.intra_op_num_threads = intra_op_num_threads
        self.inter_op_num_threads = inter_op_num_threads

    @property
    def name(self) -> str:
        return "onnxruntime"

    def load(self, descriptor: ModelDescriptor) -> ort.InferenceSession:
        if not Path(descriptor.model_path).is_file():
            raise ConfigError(f"Model file not found: {descriptor.model_path}")
        logger.info("Loading ONNX model from: %s", descriptor.model_path)
        try:
            return build_session(
                descriptor.model_path,
                use_cuda=self.use_cuda,
                use_coreml=self.use_coreml,
                intra_op_num_threads=self.intra_op_num_threads,
                inter_op_num_threads=self.inter_op_num_threads,
            )
        except Exception as e:
            raise ConfigError(
                f"Failed to load ONNX model {descriptor.model_path}: {e}", cause=e
            ) from e

    def describe(self, native: ort.InferenceSession) -> GraphSignature:
        return GraphSignature(
            inputs={
                arg.name: (_ort_dtype(arg.type), _ort_shape(arg.shape))
                for arg in native.get_inputs()
            },
            outputs={arg.name: _ort_shape(arg.shape) for arg in native.get_outputs()},
        )

    def run(
        self,
        native: ort.InferenceSession,
        feeds: Dict[str, np.ndarray],
        output_names: Optional[Sequence[str]] = None,
    ) -> Dict[str, np.ndarray]:
        names = list(output_names) if output_names else [o.name for o in native.get_outputs()]
        outputs = native.run(names, feeds)
        return dict(zip(names, outputs))
