"""Abstract base class for batching policies."""

from abc import ABC, abstractmethod
from typing import List, Sequence

from textinfer_lite.tokenization.text_encoder import EncodedSequence


class BatchingPolicy(ABC):
    """Abstract base class for batching policies.

    A batching policy splits the encoded inputs of one infer call into
    groups, each executed as one batch. Policies may reorder inputs; every
    EncodedSequence keeps its index so results are returned in input order.
    Inputs of different callers are never grouped together.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Get the policy name.

        Returns:
            Policy name string
        """
        pass

    @abstractmethod
    def plan(
        self,
        sequences: Sequence[EncodedSequence],
        max_batch_size: int
    ) -> List[List[EncodedSequence]]:
        """Split sequences into batches.

        Args:
            sequences: Encoded inputs of one request
            max_batch_size: Maximum number of sequences per batch

        Returns:
            Groups of sequences, every input in exactly one group
        """
        pass

    @staticmethod
    def _chunk(
        sequences: Sequence[EncodedSequence], max_batch_size: int
    ) -> List[List[EncodedSequence]]:
        if max_batch_size <= 0:
            raise ValueError(f"max_batch_size must be positive, got {max_batch_size}")
        return [
            list(sequences[i:i + max_batch_size])
            for i in range(0, len(sequences), max_batch_size)
        ]
