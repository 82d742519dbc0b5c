"""
textinfer_lite: A lightweight ONNX runner for NLP models.

This package turns raw text into model results:
- Tokenization with Hugging Face tokenizers, with truncation to the model limit
- Padded batch assembly matching the model's declared inputs
- A bounded pool of ONNX Runtime sessions shared by concurrent callers
- Decoding of generation, embedding and classification outputs
"""

__version__ = "0.1.0"
__author__ = "textinfer-lite contributors"

from textinfer_lite.core import (
    Cancelled,
    ConfigError,
    DecodeError,
    EncodeError,
    EngineFailure,
    InferenceError,
    InferenceRequest,
    LeaseTimeout,
    ModelDescriptor,
    OutputKind,
    PoolClosed,
    PoolExhausted,
    RequestState,
    RunnerConfig,
    ShapeMismatch,
    TensorSpec,
    TokenizerDescriptor,
)
from textinfer_lite.core.pipeline import (
    InferencePipeline,
    PipelineHandle,
    infer,
    load_model,
    shutdown,
)
from textinfer_lite.decoding import InferenceResult
from textinfer_lite.sampling import SamplingParams

__all__ = [
    "Cancelled",
    "ConfigError",
    "DecodeError",
    "EncodeError",
    "EngineFailure",
    "InferenceError",
    "InferencePipeline",
    "InferenceRequest",
    "InferenceResult",
    "LeaseTimeout",
    "ModelDescriptor",
    "OutputKind",
    "PipelineHandle",
    "PoolClosed",
    "PoolExhausted",
    "RequestState",
    "RunnerConfig",
    "SamplingParams",
    "ShapeMismatch",
    "TensorSpec",
    "TokenizerDescriptor",
    "infer",
    "load_model",
    "shutdown",
]
