"""
Text <-> token id conversion on top of a HuggingFace tokenizer.

The TextEncoder owns the truncation policy and the special-token layout
([bos] content [eos]). It is stateless once constructed and safe to call
from any number of threads.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import FrozenSet, Optional, Sequence, Tuple

from transformers import AutoTokenizer, PreTrainedTokenizerBase, PreTrainedTokenizerFast

from textinfer_lite.core.descriptors import TokenizerDescriptor
from textinfer_lite.core.errors import ConfigError, DecodeError, EncodeError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EncodedSequence:
    """Token ids for one input text.

    Attributes:
        token_ids: Ids including special tokens, never padded
        original_length: Character length of the source text
        truncated: True if content tokens were dropped to fit the model
        index: Position of the source text in the caller's input list
        num_special_prefix: Special tokens at the start of token_ids
        num_special_suffix: Special tokens at the end of token_ids
    """

    token_ids: Tuple[int, ...]
    original_length: int
    truncated: bool = False
    index: int = 0
    num_special_prefix: int = 0
    num_special_suffix: int = 0

    def __len__(self) -> int:
        return len(self.token_ids)

    @property
    def content_ids(self) -> Tuple[int, ...]:
        """Token ids without the surrounding special tokens."""
        end = len(self.token_ids) - self.num_special_suffix
        return self.token_ids[self.num_special_prefix:end]

    def truncate(self, max_length: int) -> "EncodedSequence":
        """Cut content from the tail so the sequence fits max_length.

        The closing special tokens are kept. Returns self if it already fits.
        """
        if len(self.token_ids) <= max_length:
            return self
        keep = max_length - self.num_special_prefix - self.num_special_suffix
        if keep < 0:
            raise ValueError(
                f"max_length {max_length} is shorter than the special tokens "
                f"of sequence {self.index}"
            )
        prefix = self.token_ids[: self.num_special_prefix]
        suffix = self.token_ids[len(self.token_ids) - self.num_special_suffix:]
        return EncodedSequence(
            token_ids=prefix + self.content_ids[:keep] + suffix,
            original_length=self.original_length,
            truncated=True,
            index=self.index,
            num_special_prefix=self.num_special_prefix,
            num_special_suffix=self.num_special_suffix,
        )


def load_tokenizer(descriptor: TokenizerDescriptor) -> PreTrainedTokenizerBase:
    """Load the tokenizer artifact named by a descriptor.

    A path to a tokenizer.json file is loaded directly as a fast tokenizer,
    anything else (directory or hub id) goes through AutoTokenizer.

    Args:
        descriptor: Tokenizer descriptor

    Returns:
        Loaded tokenizer

    Raises:
        ConfigError: If the tokenizer cannot be loaded
    """
    path = Path(descriptor.tokenizer_path)
    logger.info("Loading tokenizer from: %s", descriptor.tokenizer_path)
    try:
        if path.is_file() and path.suffix == ".json":
            tokenizer = PreTrainedTokenizerFast(tokenizer_file=str(path))
        else:
            tokenizer = AutoTokenizer.from_pretrained(descriptor.tokenizer_path)
    except Exception as e:
        raise ConfigError(
            f"Failed to load tokenizer from {descriptor.tokenizer_path}: {e}", cause=e
        ) from e
    logger.info("Tokenizer loaded (vocab_size=%d)", len(tokenizer))
    return tokenizer


class TextEncoder:
    """Encodes text to EncodedSequence and decodes token ids back to text.

    Special token ids come from the descriptor first and fall back to the
    tokenizer's own. A missing pad token falls back to eos.

    Attributes:
        tokenizer: Underlying HuggingFace tokenizer
        max_sequence_length: Upper bound on encoded length including specials
        pad_token_id: Resolved padding id
        bos_token_id: Resolved bos id, None if the model has no bos
        eos_token_id: Resolved eos id, None if the model has no eos
        unk_token_id: Resolved unknown-token id
    """

    def __init__(
        self,
        tokenizer: PreTrainedTokenizerBase,
        descriptor: TokenizerDescriptor,
        max_sequence_length: int,
    ):
        if max_sequence_length <= 0:
            raise ConfigError(
                f"max_sequence_length must be positive, got {max_sequence_length}"
            )
        self.tokenizer = tokenizer
        self.descriptor = descriptor
        self.max_sequence_length = max_sequence_length

        self.bos_token_id = self._resolve(descriptor.bos_token_id, tokenizer.bos_token_id)
        self.eos_token_id = self._resolve(descriptor.eos_token_id, tokenizer.eos_token_id)
        self.unk_token_id = self._resolve(descriptor.unk_token_id, tokenizer.unk_token_id)
        self.pad_token_id = self._resolve(
            descriptor.pad_token_id,
            tokenizer.pad_token_id if tokenizer.pad_token_id is not None else self.eos_token_id,
        )
        if self.pad_token_id is None:
            raise ConfigError(
                "No pad token id: set pad_token_id in the tokenizer descriptor"
            )

        self._prefix: Tuple[int, ...] = (
            (self.bos_token_id,)
            if descriptor.add_bos_token and self.bos_token_id is not None
            else ()
        )
        self._suffix: Tuple[int, ...] = (
            (self.eos_token_id,)
            if descriptor.add_eos_token and self.eos_token_id is not None
            else ()
        )
        if len(self._prefix) + len(self._suffix) >= max_sequence_length:
            raise ConfigError(
                f"max_sequence_length ({max_sequence_length}) leaves no room "
                f"for content after special tokens"
            )

        specials = set(tokenizer.all_special_ids)
        specials.update(
            i
            for i in (self.pad_token_id, self.bos_token_id, self.eos_token_id)
            if i is not None
        )
        self._skip_ids: FrozenSet[int] = frozenset(specials)

    @staticmethod
    def _resolve(configured: Optional[int], fallback: Optional[int]) -> Optional[int]:
        return configured if configured is not None else fallback

    @property
    def vocab_size(self) -> int:
        return len(self.tokenizer)

    @property
    def special_token_ids(self) -> FrozenSet[int]:
        return self._skip_ids

    def encode(self, text: str, index: int = 0) -> EncodedSequence:
        """Encode one text.

        Args:
            text: Input text, may be empty
            index: Position of the text in the caller's input list

        Returns:
            EncodedSequence no longer than max_sequence_length

        Raises:
            EncodeError: If text is not a string or the tokenizer rejects it
        """
        if not isinstance(text, str):
            raise EncodeError(f"Input {index} is not text: {type(text).__name__}")

        try:
            content = (
                self.tokenizer.encode(text, add_special_tokens=False) if text else []
            )
        except Exception as e:
            raise EncodeError(f"Failed to encode input {index}: {e}", cause=e) from e

        budget = self.max_sequence_length - len(self._prefix) - len(self._suffix)
        truncated = len(content) > budget
        if truncated:
            content = content[:budget]

        return EncodedSequence(
            token_ids=self._prefix + tuple(int(t) for t in content) + self._suffix,
            original_length=len(text),
            truncated=truncated,
            index=index,
            num_special_prefix=len(self._prefix),
            num_special_suffix=len(self._suffix),
        )

    def decode(self, token_ids: Sequence[int]) -> str:
        """Decode token ids to text, dropping padding and special tokens."""
        ids = [int(t) for t in token_ids if int(t) not in self._skip_ids]
        try:
            return self.tokenizer.decode(
                ids, skip_special_tokens=True, clean_up_tokenization_spaces=False
            )
        except Exception as e:
            raise DecodeError(f"Cannot decode token ids {ids}: {e}", cause=e) from e

    def strip_special(self, token_ids: Sequence[int]) -> Tuple[int, ...]:
        return tuple(int(t) for t in token_ids if int(t) not in self._skip_ids)
