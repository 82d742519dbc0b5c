"""
Batch assembly.

Provides:
- Batch: Padded tensors plus the sequences they were built from
- TensorAssembler: Pads sequences and builds attention masks
"""

from textinfer_lite.batch.assembler import Batch, TensorAssembler

__all__ = ["Batch", "TensorAssembler"]
