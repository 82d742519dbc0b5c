"""
Error types raised and reported by the inference pipeline.

Request-scoped errors (encode, shape, engine, timeout, cancellation) are
reported per input inside an InferenceResult. Load-time and pool-exhaustion
errors abort the whole pipeline instance and are raised to the caller.
"""

from typing import Optional


class InferenceError(Exception):
    """Base class for all pipeline errors.

    Attributes:
        kind: Stable short name of the error kind, used when rendering results
        request_scoped: True if the error only affects the request that hit it
    """

    kind = "InferenceError"
    request_scoped = True

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message}


class ConfigError(InferenceError):
    """Invalid descriptor or model/tokenizer mismatch, fatal at load time."""

    kind = "ConfigError"
    request_scoped = False


class EncodeError(InferenceError):
    """Input text could not be encoded."""

    kind = "EncodeError"


class DecodeError(InferenceError):
    """Raw model output could not be turned into a result."""

    kind = "DecodeError"


class ShapeMismatch(InferenceError):
    """Batch tensors disagree with the model's declared inputs or outputs."""

    kind = "ShapeMismatch"


class EngineFailure(InferenceError):
    """The native engine failed while executing a forward pass."""

    kind = "EngineFailure"


class LeaseTimeout(InferenceError):
    """No session handle became free within the configured bound."""

    kind = "Timeout"


class Cancelled(InferenceError):
    """The request was cancelled before its result was delivered."""

    kind = "Cancelled"


class PoolExhausted(InferenceError):
    """Every session handle has been permanently retired."""

    kind = "PoolExhausted"
    request_scoped = False


class PoolClosed(InferenceError):
    """The pool was shut down."""

    kind = "PoolClosed"
    request_scoped = False
