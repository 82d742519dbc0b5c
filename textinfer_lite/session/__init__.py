"""
Session lifecycle management.

Provides:
- EngineBackend: Capability interface to the native inference engine
- OnnxRuntimeBackend: ONNX Runtime implementation
- SessionHandle: One exclusively-owned native session
- SessionPool: Fixed-size FIFO pool of handles with retire-and-reload
"""

from textinfer_lite.session.backend import EngineBackend, GraphSignature
from textinfer_lite.session.handle import SessionHandle, validate_signature
from textinfer_lite.session.onnx_backend import OnnxRuntimeBackend, build_session
from textinfer_lite.session.pool import SessionPool, resolve_pool_size

__all__ = [
    "EngineBackend",
    "GraphSignature",
    "OnnxRuntimeBackend",
    "SessionHandle",
    "SessionPool",
    "build_session",
    "resolve_pool_size",
    "validate_signature",
]
