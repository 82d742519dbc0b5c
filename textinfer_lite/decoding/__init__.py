"""
Result decoding.

Provides:
- InferenceResult: Per-input output or error
- ResultDecoder: Raw output tensors -> ordered InferenceResults
"""

from textinfer_lite.decoding.result_decoder import InferenceResult, ResultDecoder

__all__ = ["InferenceResult", "ResultDecoder"]
