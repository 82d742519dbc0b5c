"""Length-bucketed batching policy."""

from typing import List, Sequence

from textinfer_lite.scheduler.policy import BatchingPolicy
from textinfer_lite.tokenization.text_encoder import EncodedSequence


class LengthBucketPolicy(BatchingPolicy):
    """Groups inputs of similar length to reduce padding.

    Sequences are sorted by token length (longest first) and chunked. Equal
    lengths keep their input order, so the plan is deterministic.
    """

    @property
    def name(self) -> str:
        return "LENGTH"

    def plan(
        self,
        sequences: Sequence[EncodedSequence],
        max_batch_size: int
    ) -> List[List[EncodedSequence]]:
        """Sort by length, then chunk.

        Args:
            sequences: Encoded inputs of one request
            max_batch_size: Maximum number of sequences per batch

        Returns:
            Groups of up to max_batch_size sequences of similar length
        """
        ordered = sorted(sequences, key=lambda seq: (-len(seq), seq.index))
        return self._chunk(ordered, max_batch_size)
