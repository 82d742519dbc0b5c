"""
Immutable descriptors of the model and tokenizer artifacts.

A ModelDescriptor and a TokenizerDescriptor are loaded once at startup and
paired 1:1 inside an InferencePipeline. They only carry already-parsed
values; reading them from disk is handled by from_dict/from_json_file or by
RunnerConfig.
"""

import json
from dataclasses import asdict, dataclass, replace
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

from textinfer_lite.core.errors import ConfigError

# Inputs the TensorAssembler knows how to build.
SUPPORTED_INPUTS = ("input_ids", "attention_mask", "token_type_ids", "position_ids")
SUPPORTED_DTYPES = ("int64", "int32")


class OutputKind(Enum):
    """Kind of output the model produces, decides how raw tensors are decoded."""

    GENERATION = "generation"  # token ids or per-position logits
    EMBEDDING = "embedding"  # pooled vector or per-token hidden states
    CLASSIFICATION = "classification"  # one logits row per input

    @classmethod
    def parse(cls, value: Union[str, "OutputKind"]) -> "OutputKind":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ConfigError(
                f"Unknown output_kind {value!r}, expected one of "
                f"{[k.value for k in cls]}"
            )


def _normalize_shape(shape: Any) -> Tuple[Optional[int], ...]:
    # Symbolic axis names ("batch", "sequence") are dynamic axes.
    return tuple(dim if isinstance(dim, int) and dim > 0 else None for dim in shape)


@dataclass(frozen=True)
class TensorSpec:
    """Declared model input.

    Attributes:
        name: Input name in the model graph
        dtype: Integer dtype expected by the model ("int64" or "int32")
        shape: [batch, sequence] axes, None marks a dynamic axis
    """

    name: str
    dtype: str = "int64"
    shape: Tuple[Optional[int], ...] = (None, None)

    def __post_init__(self) -> None:
        object.__setattr__(self, "shape", _normalize_shape(self.shape))

    @property
    def fixed_batch_size(self) -> Optional[int]:
        return self.shape[0] if self.shape else None

    @property
    def fixed_sequence_length(self) -> Optional[int]:
        return self.shape[1] if len(self.shape) > 1 else None

    @classmethod
    def from_dict(cls, data: Union[str, Dict[str, Any]]) -> "TensorSpec":
        if isinstance(data, str):
            return cls(name=data)
        return cls(
            name=data["name"],
            dtype=data.get("dtype", "int64"),
            shape=tuple(data.get("shape", (None, None))),
        )


DEFAULT_INPUTS = (TensorSpec("input_ids"), TensorSpec("attention_mask"))


@dataclass(frozen=True)
class ModelDescriptor:
    """Everything the pipeline needs to know about one model artifact.

    Attributes:
        model_path: Path to the ONNX model file
        max_sequence_length: Longest token sequence the model accepts
        inputs: Declared input tensors (names, dtypes, shapes)
        output_name: Output tensor to decode, None means the first graph output
        output_kind: How the output tensor is turned into results
        vocab_size: Size of the model's embedding table, if known
        name: Display name, defaults to the model file stem
    """

    model_path: str
    max_sequence_length: int = 512
    inputs: Tuple[TensorSpec, ...] = DEFAULT_INPUTS
    output_name: Optional[str] = None
    output_kind: OutputKind = OutputKind.GENERATION
    vocab_size: Optional[int] = None
    name: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "model_path", str(self.model_path))
        object.__setattr__(self, "output_kind", OutputKind.parse(self.output_kind))
        object.__setattr__(
            self,
            "inputs",
            tuple(
                spec if isinstance(spec, TensorSpec) else TensorSpec.from_dict(spec)
                for spec in self.inputs
            ),
        )
        if self.name is None:
            object.__setattr__(self, "name", Path(self.model_path).stem or "model")
        self._validate()

    def _validate(self) -> None:
        """Validate descriptor fields.

        Raises:
            ConfigError: If any field is inconsistent.
        """
        if not self.model_path:
            raise ConfigError("model_path cannot be empty")
        if self.max_sequence_length <= 0:
            raise ConfigError(
                f"max_sequence_length must be positive, got {self.max_sequence_length}"
            )
        if self.vocab_size is not None and self.vocab_size <= 0:
            raise ConfigError(f"vocab_size must be positive, got {self.vocab_size}")

        names = [spec.name for spec in self.inputs]
        if "input_ids" not in names:
            raise ConfigError(f"Model inputs must include 'input_ids', got {names}")
        if len(set(names)) != len(names):
            raise ConfigError(f"Duplicate model input names: {names}")

        for spec in self.inputs:
            if spec.name not in SUPPORTED_INPUTS:
                raise ConfigError(
                    f"Unsupported model input {spec.name!r}, "
                    f"supported inputs are {list(SUPPORTED_INPUTS)}"
                )
            if spec.dtype not in SUPPORTED_DTYPES:
                raise ConfigError(
                    f"Unsupported dtype {spec.dtype!r} for input {spec.name!r}"
                )
            if len(spec.shape) != 2:
                raise ConfigError(
                    f"Input {spec.name!r} must be rank 2 [batch, sequence], "
                    f"got shape {spec.shape}"
                )

        fixed_lengths = {s.fixed_sequence_length for s in self.inputs} - {None}
        if len(fixed_lengths) > 1:
            raise ConfigError(f"Inputs declare conflicting sequence axes {fixed_lengths}")
        fixed_batches = {s.fixed_batch_size for s in self.inputs} - {None}
        if len(fixed_batches) > 1:
            raise ConfigError(f"Inputs declare conflicting batch axes {fixed_batches}")

        fixed = self.fixed_sequence_length
        if fixed is not None and fixed > self.max_sequence_length:
            raise ConfigError(
                f"Fixed sequence axis ({fixed}) exceeds "
                f"max_sequence_length ({self.max_sequence_length})"
            )

    @property
    def input_names(self) -> Tuple[str, ...]:
        return tuple(spec.name for spec in self.inputs)

    @property
    def fixed_sequence_length(self) -> Optional[int]:
        for spec in self.inputs:
            if spec.fixed_sequence_length is not None:
                return spec.fixed_sequence_length
        return None

    @property
    def fixed_batch_size(self) -> Optional[int]:
        for spec in self.inputs:
            if spec.fixed_batch_size is not None:
                return spec.fixed_batch_size
        return None

    def with_overrides(self, **fields: Any) -> "ModelDescriptor":
        return replace(self, **fields)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ModelDescriptor":
        """Build a descriptor from a parsed config mapping.

        Args:
            data: Mapping with at least "model_path"

        Returns:
            Validated ModelDescriptor

        Raises:
            ConfigError: If required keys are missing or values are invalid
        """
        if "model_path" not in data:
            raise ConfigError("Model descriptor requires 'model_path'")
        kwargs = dict(data)
        if "inputs" in kwargs:
            kwargs["inputs"] = tuple(TensorSpec.from_dict(s) for s in kwargs["inputs"])
        try:
            return cls(**kwargs)
        except TypeError as e:
            raise ConfigError(f"Invalid model descriptor: {e}") from e

    @classmethod
    def from_json_file(cls, path: Union[str, Path]) -> "ModelDescriptor":
        with open(path, "r", encoding="utf-8") as f:
            return cls.from_dict(json.load(f))

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["output_kind"] = self.output_kind.value
        data["inputs"] = [
            {"name": s.name, "dtype": s.dtype, "shape": list(s.shape)}
            for s in self.inputs
        ]
        return data


@dataclass(frozen=True)
class TokenizerDescriptor:
    """Tokenizer artifact paired with a ModelDescriptor.

    Special token ids left as None are taken from the loaded tokenizer.

    Attributes:
        tokenizer_path: tokenizer.json file, tokenizer directory, or hub id
        pad_token_id: Padding token id
        bos_token_id: Beginning-of-sequence token id
        eos_token_id: End-of-sequence token id
        unk_token_id: Unknown token id
        add_bos_token: Prefix every sequence with the bos token
        add_eos_token: Close every sequence with the eos token
    """

    tokenizer_path: str
    pad_token_id: Optional[int] = None
    bos_token_id: Optional[int] = None
    eos_token_id: Optional[int] = None
    unk_token_id: Optional[int] = None
    add_bos_token: bool = True
    add_eos_token: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "tokenizer_path", str(self.tokenizer_path))
        if not self.tokenizer_path:
            raise ConfigError("tokenizer_path cannot be empty")
        for attr in ("pad_token_id", "bos_token_id", "eos_token_id", "unk_token_id"):
            value = getattr(self, attr)
            if value is not None and value < 0:
                raise ConfigError(f"{attr} must be non-negative, got {value}")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TokenizerDescriptor":
        if "tokenizer_path" not in data:
            raise ConfigError("Tokenizer descriptor requires 'tokenizer_path'")
        try:
            return cls(**data)
        except TypeError as e:
            raise ConfigError(f"Invalid tokenizer descriptor: {e}") from e

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
