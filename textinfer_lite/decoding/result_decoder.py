"""
Turns raw output tensors into per-input results.

The decoding strategy is picked once from the model's declared output kind:

- generation: token ids (or per-position logits reduced greedily) are
  un-padded per row and decoded back to text
- embedding: pooled vectors are returned unchanged, per-token hidden
  states are mean-pooled over real tokens
- classification: one logits row per input plus its argmax label
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

import torch

from textinfer_lite.batch.assembler import Batch
from textinfer_lite.core.descriptors import ModelDescriptor, OutputKind
from textinfer_lite.core.errors import InferenceError, ShapeMismatch
from textinfer_lite.sampling.sampling import greedy_sampling
from textinfer_lite.tokenization.text_encoder import EncodedSequence, TextEncoder


@dataclass(frozen=True)
class InferenceResult:
    """Output for one input text.

    Attributes:
        index: Position of the input in the caller's list
        text: Decoded text (generation models)
        token_ids: Decoded token ids without padding or special tokens
        vector: Embedding or logits row (embedding/classification models)
        label: Argmax class (classification models)
        truncated: True if the input was truncated to fit the model
        error: Why this input failed, None on success
    """

    index: int
    text: Optional[str] = None
    token_ids: Optional[Tuple[int, ...]] = None
    vector: Optional[torch.Tensor] = None
    label: Optional[int] = None
    truncated: bool = False
    error: Optional[InferenceError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"index": self.index, "truncated": self.truncated}
        if self.text is not None:
            data["text"] = self.text
        if self.token_ids is not None:
            data["token_ids"] = list(self.token_ids)
        if self.vector is not None:
            data["vector"] = self.vector.tolist()
        if self.label is not None:
            data["label"] = self.label
        if self.error is not None:
            data["error"] = self.error.to_dict()
        return data


RowDecoder = Callable[[torch.Tensor, Batch], List[InferenceResult]]


class ResultDecoder:
    """Decodes raw model outputs for one model.

    Attributes:
        descriptor: Model whose outputs are decoded
        encoder: Used to turn token ids back into text
        output_name: Output tensor to read, None accepts a single output
    """

    def __init__(
        self,
        descriptor: ModelDescriptor,
        encoder: TextEncoder,
        output_name: Optional[str] = None,
    ):
        self.descriptor = descriptor
        self.encoder = encoder
        self.output_name = output_name or descriptor.output_name
        decoders: Dict[OutputKind, RowDecoder] = {
            OutputKind.GENERATION: self._decode_generation,
            OutputKind.EMBEDDING: self._decode_embedding,
            OutputKind.CLASSIFICATION: self._decode_classification,
        }
        self._decode_rows = decoders[descriptor.output_kind]

    def decode(self, batch: Batch, raw_outputs: Dict[str, torch.Tensor]) -> List[InferenceResult]:
        """Decode one batch's outputs.

        Args:
            batch: The batch that was executed
            raw_outputs: Output tensors by name

        Returns:
            One result per real sequence, ordered by original input index

        Raises:
            ShapeMismatch: If the output is missing or its shape does not fit
            DecodeError: If the tokenizer rejects an emitted token id
        """
        output = self.select_output(raw_outputs)
        if output.dim() == 0 or output.shape[0] != batch.num_rows:
            raise ShapeMismatch(
                f"Output batch axis {tuple(output.shape)} does not match "
                f"{batch.num_rows} input rows"
            )
        results = self._decode_rows(output, batch)
        return sorted(results, key=lambda r: r.index)

    @staticmethod
    def failed(sequence: Any, error: InferenceError) -> InferenceResult:
        """Build an error result for an EncodedSequence or a bare input index."""
        if isinstance(sequence, EncodedSequence):
            return InferenceResult(
                index=sequence.index, truncated=sequence.truncated, error=error
            )
        return InferenceResult(index=int(sequence), error=error)

    def select_output(self, raw_outputs: Dict[str, torch.Tensor]) -> torch.Tensor:
        if self.output_name is not None:
            if self.output_name not in raw_outputs:
                raise ShapeMismatch(
                    f"Output {self.output_name!r} missing from {sorted(raw_outputs)}"
                )
            return raw_outputs[self.output_name]
        if len(raw_outputs) != 1:
            raise ShapeMismatch(
                f"Expected a single output, got {sorted(raw_outputs)}; set output_name"
            )
        return next(iter(raw_outputs.values()))

    def _decode_generation(self, output: torch.Tensor, batch: Batch) -> List[InferenceResult]:
        if output.dim() == 3 and output.is_floating_point():
            token_ids = greedy_sampling(output)
        elif output.dim() == 2 and not output.is_floating_point():
            token_ids = output
        else:
            raise ShapeMismatch(
                f"Generation output must be ids [B, S] or logits [B, S, V], "
                f"got {output.dtype} {tuple(output.shape)}"
            )

        aligned = token_ids.shape[1] == batch.padded_length
        results = []
        for row, seq in enumerate(batch.sequences):
            if aligned:
                ids = token_ids[row, : len(seq)].tolist()
            else:
                ids = self._strip_padding(token_ids[row].tolist())
            content = self.encoder.strip_special(ids)
            results.append(
                InferenceResult(
                    index=seq.index,
                    text=self.encoder.decode(content),
                    token_ids=content,
                    truncated=seq.truncated,
                )
            )
        return results

    def _strip_padding(self, ids: List[int]) -> List[int]:
        end = len(ids)
        while end > 0 and ids[end - 1] == self.encoder.pad_token_id:
            end -= 1
        return ids[:end]

    def _decode_embedding(self, output: torch.Tensor, batch: Batch) -> List[InferenceResult]:
        if output.dim() == 2:
            vectors = [output[row] for row in range(batch.size)]
        elif output.dim() == 3:
            if output.shape[1] != batch.padded_length:
                raise ShapeMismatch(
                    f"Hidden states sequence axis {output.shape[1]} does not match "
                    f"padded length {batch.padded_length}"
                )
            vectors = []
            for row, seq in enumerate(batch.sequences):
                hidden = output[row, : len(seq)].float()
                if len(seq):
                    vectors.append(hidden.mean(dim=0))
                else:
                    vectors.append(torch.zeros(output.shape[-1]))
        else:
            raise ShapeMismatch(
                f"Embedding output must be [B, H] or [B, S, H], got {tuple(output.shape)}"
            )

        return [
            InferenceResult(index=seq.index, vector=vector, truncated=seq.truncated)
            for seq, vector in zip(batch.sequences, vectors)
        ]

    def _decode_classification(self, output: torch.Tensor, batch: Batch) -> List[InferenceResult]:
        if output.dim() != 2:
            raise ShapeMismatch(
                f"Classification output must be [B, C], got {tuple(output.shape)}"
            )
        return [
            InferenceResult(
                index=seq.index,
                vector=output[row],
                label=int(output[row].argmax().item()),
                truncated=seq.truncated,
            )
            for row, seq in enumerate(batch.sequences)
        ]
