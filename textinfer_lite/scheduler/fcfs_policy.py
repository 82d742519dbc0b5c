"""First-Come-First-Serve batching policy."""

from typing import List, Sequence

from textinfer_lite.scheduler.policy import BatchingPolicy
from textinfer_lite.tokenization.text_encoder import EncodedSequence


class FCFSPolicy(BatchingPolicy):
    """First-Come-First-Serve batching policy.

    Batches inputs in the order they were submitted. Predictable, but a
    single long input makes its whole batch pay for the padding.
    """

    @property
    def name(self) -> str:
        return "FCFS"

    def plan(
        self,
        sequences: Sequence[EncodedSequence],
        max_batch_size: int
    ) -> List[List[EncodedSequence]]:
        """Chunk inputs in arrival order.

        Args:
            sequences: Encoded inputs of one request
            max_batch_size: Maximum number of sequences per batch

        Returns:
            Consecutive groups of up to max_batch_size sequences
        """
        return self._chunk(sequences, max_batch_size)
