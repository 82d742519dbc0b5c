"""
Tokenization layer.

Provides:
- TextEncoder: text <-> token ids with truncation and special tokens
- EncodedSequence: Immutable encoded input
- load_tokenizer: Load a tokenizer artifact through transformers
"""

from textinfer_lite.tokenization.text_encoder import (
    EncodedSequence,
    TextEncoder,
    load_tokenizer,
)

__all__ = ["EncodedSequence", "TextEncoder", "load_tokenizer"]
