"""
SessionHandle: one exclusively-owned native model session.
"""

import logging
import threading
from typing import Any, Dict

import numpy as np
import torch

from textinfer_lite.batch.assembler import TORCH_DTYPES, Batch
from textinfer_lite.core.descriptors import ModelDescriptor
from textinfer_lite.core.errors import ConfigError, EngineFailure, ShapeMismatch
from textinfer_lite.session.backend import EngineBackend, GraphSignature

logger = logging.getLogger(__name__)


def validate_signature(descriptor: ModelDescriptor, signature: GraphSignature) -> str:
    """Check that a loaded graph matches its descriptor.

    Args:
        descriptor: Declared model inputs and output
        signature: What the loaded graph exposes

    Returns:
        Name of the output tensor to decode

    Raises:
        ConfigError: If the graph and the descriptor disagree
    """
    declared = set(descriptor.input_names)
    graph_inputs = set(signature.inputs)
    if declared != graph_inputs:
        raise ConfigError(
            f"Model {descriptor.name} declares inputs {sorted(declared)} "
            f"but the graph expects {sorted(graph_inputs)}"
        )

    for spec in descriptor.inputs:
        dtype, shape = signature.inputs[spec.name]
        if dtype != spec.dtype:
            raise ConfigError(
                f"Input {spec.name!r} declared as {spec.dtype} but the graph expects {dtype}"
            )
        if len(shape) != len(spec.shape):
            raise ConfigError(
                f"Input {spec.name!r} declared with rank {len(spec.shape)} "
                f"but the graph expects rank {len(shape)}"
            )
        for axis, (graph_dim, declared_dim) in enumerate(zip(shape, spec.shape)):
            if graph_dim is not None and graph_dim != declared_dim:
                raise ConfigError(
                    f"Input {spec.name!r} axis {axis} is fixed to {graph_dim} in the "
                    f"graph but declared as {declared_dim}"
                )

    if not signature.outputs:
        raise ConfigError(f"Model {descriptor.name} has no outputs")
    output_name = descriptor.output_name or signature.output_names[0]
    if output_name not in signature.outputs:
        raise ConfigError(
            f"Output {output_name!r} not found, graph outputs are {signature.output_names}"
        )
    return output_name


class SessionHandle:
    """Owns one loaded native session for a model.

    run() is blocking and must never be called concurrently on the same
    handle; the SessionPool guarantees this. A handle that hit an engine
    failure is marked unhealthy and must be retired, not reused.

    Attributes:
        handle_id: Pool-unique id
        descriptor: Model this handle runs
        signature: Inputs/outputs exposed by the loaded graph
        output_name: Output tensor fetched on every run
        healthy: False once an engine failure occurred
        run_count: Number of successful runs
    """

    def __init__(self, handle_id: int, backend: EngineBackend, descriptor: ModelDescriptor):
        self.handle_id = handle_id
        self.backend = backend
        self.descriptor = descriptor
        self._native: Any = backend.load(descriptor)
        try:
            self.signature = backend.describe(self._native)
            self.output_name = validate_signature(descriptor, self.signature)
        except Exception:
            backend.close(self._native)
            raise
        self._run_lock = threading.Lock()
        self.healthy = True
        self.closed = False
        self.run_count = 0
        logger.debug(
            "Session handle %d loaded for %s (output=%s)",
            handle_id, descriptor.name, self.output_name,
        )

    def _prepare_feeds(self, batch: Batch) -> Dict[str, np.ndarray]:
        """Convert batch tensors to engine inputs, checking declared shapes.

        Raises:
            ShapeMismatch: If a declared input is missing or has the wrong
                rank, fixed axis, or dtype
        """
        tensors = batch.tensors()
        feeds = {}
        for spec in self.descriptor.inputs:
            tensor = tensors.get(spec.name)
            if tensor is None:
                raise ShapeMismatch(f"Batch has no tensor for input {spec.name!r}")
            if tensor.dim() != len(spec.shape):
                raise ShapeMismatch(
                    f"Input {spec.name!r} has rank {tensor.dim()}, expected {len(spec.shape)}"
                )
            for axis, dim in enumerate(spec.shape):
                if dim is not None and tensor.shape[axis] != dim:
                    raise ShapeMismatch(
                        f"Input {spec.name!r} axis {axis} is {tensor.shape[axis]}, "
                        f"model requires {dim}"
                    )
            if tensor.dtype != TORCH_DTYPES[spec.dtype]:
                raise ShapeMismatch(
                    f"Input {spec.name!r} has dtype {tensor.dtype}, model requires {spec.dtype}"
                )
            feeds[spec.name] = tensor.contiguous().numpy()

        shapes = {tuple(f.shape) for f in feeds.values()}
        if len(shapes) > 1:
            raise ShapeMismatch(f"Input tensors disagree on shape: {sorted(shapes)}")
        return feeds

    def run(self, batch: Batch) -> Dict[str, torch.Tensor]:
        """Execute one forward pass over a batch.

        Args:
            batch: Assembled batch

        Returns:
            Raw output tensors by output name

        Raises:
            ShapeMismatch: If the batch does not match the declared inputs
            EngineFailure: If the native engine fails; the handle becomes unhealthy
            RuntimeError: If the handle is already running
        """
        if self.closed:
            raise EngineFailure(f"Session handle {self.handle_id} is closed")
        feeds = self._prepare_feeds(batch)

        if not self._run_lock.acquire(blocking=False):
            raise RuntimeError(f"Session handle {self.handle_id} is already running")
        try:
            raw = self.backend.run(self._native, feeds, [self.output_name])
        except Exception as e:
            self.healthy = False
            logger.error(
                "Inference failed on session handle %d: %s", self.handle_id, e
            )
            raise EngineFailure(
                f"Native engine failed on session handle {self.handle_id}: {e}", cause=e
            ) from e
        finally:
            self._run_lock.release()

        self.run_count += 1
        return {name: torch.from_numpy(np.array(value)) for name, value in raw.items()}

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.backend.close(self._native)
        self._native = None
        logger.debug("Session handle %d closed", self.handle_id)

    def __repr__(self) -> str:
        return (
            f"SessionHandle(id={self.handle_id}, model={self.descriptor.name}, "
            f"healthy={self.healthy}, runs={self.run_count})"
        )
