"""
Token sampling strategies for the generation loop.

Provides:
- SamplingParams: Sampling configuration dataclass
- sample: Pick next tokens from logits
- Sampling strategies: Greedy, temperature, top-k, top-p
- Repetition penalty
"""

from textinfer_lite.sampling.sampling import (
    SamplingParams,
    greedy_sampling,
    make_generator,
    sample,
)

__all__ = ["SamplingParams", "greedy_sampling", "make_generator", "sample"]
