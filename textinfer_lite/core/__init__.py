"""
Core data types for the inference runner.

Provides:
- ModelDescriptor / TokenizerDescriptor: Validated artifact descriptions
- RunnerConfig: Pool and batching settings plus descriptors
- InferenceRequest / RequestState: Per-call state machine
- Error taxonomy shared by every module

The pipeline lives in textinfer_lite.core.pipeline and is not imported here,
since it depends on every other subpackage.
"""

from textinfer_lite.core.config import RunnerConfig
from textinfer_lite.core.descriptors import (
    ModelDescriptor,
    OutputKind,
    TensorSpec,
    TokenizerDescriptor,
)
from textinfer_lite.core.errors import (
    Cancelled,
    ConfigError,
    DecodeError,
    EncodeError,
    EngineFailure,
    InferenceError,
    LeaseTimeout,
    PoolClosed,
    PoolExhausted,
    ShapeMismatch,
)
from textinfer_lite.core.request import InferenceRequest, RequestState

__all__ = [
    "Cancelled",
    "ConfigError",
    "DecodeError",
    "EncodeError",
    "EngineFailure",
    "InferenceError",
    "InferenceRequest",
    "LeaseTimeout",
    "ModelDescriptor",
    "OutputKind",
    "PoolClosed",
    "PoolExhausted",
    "RequestState",
    "RunnerConfig",
    "ShapeMismatch",
    "TensorSpec",
    "TokenizerDescriptor",
]
