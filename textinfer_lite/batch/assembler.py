"""
Packs encoded sequences into rectangular, padded model inputs.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Sequence, Tuple

import torch

from textinfer_lite.core.descriptors import ModelDescriptor
from textinfer_lite.tokenization.text_encoder import EncodedSequence

TORCH_DTYPES = {"int64": torch.long, "int32": torch.int32}


@dataclass
class Batch:
    """A group of encoded sequences padded to a common shape.

    Row i of every tensor belongs to sequences[i]. Rows past len(sequences)
    are filler rows (all padding, mask 0) that only exist when the model
    declares a fixed batch axis.

    Attributes:
        sequences: Real sequences in row order, each tagged with its input index
        input_ids: Token ids [num_rows, padded_length]
        attention_mask: 1 for real tokens, 0 for padding, same shape
        padded_length: Common row length
        extra_inputs: Additional model inputs (token_type_ids, position_ids)
    """

    sequences: Tuple[EncodedSequence, ...]
    input_ids: torch.Tensor
    attention_mask: torch.Tensor
    padded_length: int
    extra_inputs: Dict[str, torch.Tensor] = field(default_factory=dict)

    @property
    def size(self) -> int:
        """Number of real sequences."""
        return len(self.sequences)

    @property
    def num_rows(self) -> int:
        """Number of tensor rows, filler rows included."""
        return self.input_ids.shape[0]

    @property
    def indices(self) -> List[int]:
        return [seq.index for seq in self.sequences]

    @property
    def lengths(self) -> List[int]:
        """Unpadded length of each real row."""
        return [len(seq) for seq in self.sequences]

    def tensors(self) -> Dict[str, torch.Tensor]:
        """All input tensors by model input name."""
        feeds = {"input_ids": self.input_ids, "attention_mask": self.attention_mask}
        feeds.update(self.extra_inputs)
        return feeds


class TensorAssembler:
    """Builds Batch objects for one model.

    The padded length is the longest sequence in the batch, bounded by the
    model's max_sequence_length. A model with a fixed sequence axis is always
    padded to that axis. Stateless and deterministic.

    Attributes:
        descriptor: Model the batches are built for
        pad_token_id: Id written into padding positions
    """

    def __init__(self, descriptor: ModelDescriptor, pad_token_id: int):
        self.descriptor = descriptor
        self.pad_token_id = pad_token_id

    def assemble(self, sequences: Sequence[EncodedSequence]) -> Batch:
        """Pad sequences into one batch.

        Args:
            sequences: Encoded sequences in the order they should occupy rows

        Returns:
            Batch with input_ids, attention_mask and any extra declared inputs

        Raises:
            ValueError: If sequences is empty or exceeds a fixed batch axis
        """
        if not sequences:
            raise ValueError("Cannot assemble an empty batch")

        limit = self.descriptor.fixed_sequence_length or self.descriptor.max_sequence_length
        rows = tuple(seq.truncate(limit) for seq in sequences)

        if self.descriptor.fixed_sequence_length is not None:
            padded_length = self.descriptor.fixed_sequence_length
        else:
            # At least one column so every row is a valid model input
            padded_length = max(1, max(len(seq) for seq in rows))

        num_rows = len(rows)
        fixed_batch = self.descriptor.fixed_batch_size
        if fixed_batch is not None:
            if num_rows > fixed_batch:
                raise ValueError(
                    f"{num_rows} sequences exceed the model's fixed batch axis ({fixed_batch})"
                )
            num_rows = fixed_batch

        input_ids = torch.full(
            (num_rows, padded_length), self.pad_token_id, dtype=torch.long
        )
        attention_mask = torch.zeros((num_rows, padded_length), dtype=torch.long)

        for i, seq in enumerate(rows):
            seq_len = len(seq)
            if seq_len:
                input_ids[i, :seq_len] = torch.tensor(seq.token_ids, dtype=torch.long)
                attention_mask[i, :seq_len] = 1

        extra_inputs = {}
        names = self.descriptor.input_names
        if "token_type_ids" in names:
            extra_inputs["token_type_ids"] = torch.zeros_like(input_ids)
        if "position_ids" in names:
            position_ids = attention_mask.cumsum(dim=-1) - 1
            extra_inputs["position_ids"] = position_ids.masked_fill(attention_mask == 0, 0)

        # Cast every tensor to the dtype the model declares for it
        dtypes = {spec.name: TORCH_DTYPES[spec.dtype] for spec in self.descriptor.inputs}
        if "input_ids" in dtypes:
            input_ids = input_ids.to(dtypes["input_ids"])
        if "attention_mask" in dtypes:
            attention_mask = attention_mask.to(dtypes["attention_mask"])
        extra_inputs = {name: t.to(dtypes[name]) for name, t in extra_inputs.items()}

        return Batch(
            sequences=rows,
            input_ids=input_ids,
            attention_mask=attention_mask,
            padded_length=padded_length,
            extra_inputs=extra_inputs,
        )
