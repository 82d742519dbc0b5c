"""
InferenceRequest: one infer call moving through the pipeline states.
"""

import threading
import uuid
from enum import Enum
from typing import List, Optional, Sequence

from textinfer_lite.core.errors import Cancelled


class RequestState(Enum):
    """State of an inference request."""

    IDLE = "idle"  # Created, nothing done yet
    ENCODING = "encoding"  # Texts are being tokenized
    BATCHING = "batching"  # Encoded inputs are being grouped and padded
    EXECUTING = "executing"  # A batch is running on a leased session
    DECODING = "decoding"  # Raw outputs are being turned into results
    COMPLETE = "complete"  # Every input has a result
    FAILED = "failed"  # Aborted, every input has an error result

    @property
    def is_terminal(self) -> bool:
        return self in (RequestState.COMPLETE, RequestState.FAILED)


# Executing and decoding alternate once per batch.
_TRANSITIONS = {
    RequestState.IDLE: {RequestState.ENCODING},
    RequestState.ENCODING: {RequestState.BATCHING},
    RequestState.BATCHING: {RequestState.EXECUTING, RequestState.COMPLETE},
    RequestState.EXECUTING: {RequestState.DECODING, RequestState.BATCHING},
    RequestState.DECODING: {RequestState.BATCHING, RequestState.COMPLETE},
    RequestState.COMPLETE: set(),
    RequestState.FAILED: set(),
}


class InferenceRequest:
    """Tracks one infer call through the pipeline.

    Any non-terminal state may move to FAILED. A request ends COMPLETE only
    if every input produced a result; a failed input does not stop the
    remaining batches from running. A cancel() is honored at the next state
    boundary: the native call in flight is never interrupted, its results
    are discarded when they arrive.

    Attributes:
        texts: Input texts in caller order
        request_id: Unique identifier for the request
        state: Current state
        history: Every state the request has been in, in order
    """

    def __init__(self, texts: Sequence[str], request_id: Optional[str] = None):
        self.texts: List[str] = list(texts)
        self.request_id = request_id or f"req_{uuid.uuid4().hex[:8]}"
        self.state = RequestState.IDLE
        self.history: List[RequestState] = [RequestState.IDLE]
        self._cancelled = threading.Event()

    def __len__(self) -> int:
        return len(self.texts)

    def transition(self, new_state: RequestState) -> None:
        """Move to new_state.

        Raises:
            ValueError: If the transition is not allowed
            Cancelled: If the request was cancelled; the request moves to FAILED
        """
        if new_state is not RequestState.FAILED and new_state not in _TRANSITIONS[self.state]:
            raise ValueError(
                f"Illegal transition {self.state.value} -> {new_state.value} "
                f"for {self.request_id}"
            )
        if self.state.is_terminal:
            raise ValueError(f"{self.request_id} is already {self.state.value}")
        if self._cancelled.is_set() and new_state is not RequestState.FAILED:
            self._set(RequestState.FAILED)
            raise Cancelled(f"Request {self.request_id} was cancelled")
        self._set(new_state)

    def _set(self, state: RequestState) -> None:
        self.state = state
        self.history.append(state)

    def fail(self) -> None:
        if not self.state.is_terminal:
            self._set(RequestState.FAILED)

    def cancel(self) -> None:
        """Ask the pipeline to stop at the next state boundary."""
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def is_completed(self) -> bool:
        """Check if request is completed."""
        return self.state == RequestState.COMPLETE

    def __repr__(self) -> str:
        return (
            f"InferenceRequest(id={self.request_id}, inputs={len(self.texts)}, "
            f"state={self.state.value})"
        )
