"""
Sampling strategies for text generation.

This module implements the token selection used by the generation loop and
the greedy reduction used when decoding per-position logits.
"""

import torch
from dataclasses import dataclass
from typing import Optional, Sequence


@dataclass
class SamplingParams:
    """Parameters for sampling strategies."""
    temperature: float = 1.0
    top_p: float = 1.0
    top_k: int = 0
    repetition_penalty: float = 1.0
    seed: Optional[int] = None
    stop_sequences: Sequence[str] = ()

    def __post_init__(self) -> None:
        if isinstance(self.stop_sequences, str):
            self.stop_sequences = (self.stop_sequences,)
        self.stop_sequences = tuple(self.stop_sequences)
        if any(not stop for stop in self.stop_sequences):
            raise ValueError("stop_sequences must not contain empty strings")
        if self.temperature < 0.0:
            raise ValueError(f"temperature must be >= 0, got {self.temperature}")
        if not 0.0 < self.top_p <= 1.0:
            raise ValueError(f"top_p must be in (0, 1], got {self.top_p}")
        if self.top_k < 0:
            raise ValueError(f"top_k must be >= 0, got {self.top_k}")
        if self.repetition_penalty <= 0.0:
            raise ValueError(
                f"repetition_penalty must be positive, got {self.repetition_penalty}"
            )

    @property
    def is_greedy(self) -> bool:
        return self.temperature == 0.0


def greedy_sampling(logits: torch.Tensor) -> torch.Tensor:
    """Greedy sampling (argmax over the last axis)."""
    return logits.argmax(dim=-1)


def temperature_scaling(logits: torch.Tensor, temperature: float) -> torch.Tensor:
    """Apply temperature scaling."""
    return logits / temperature


def top_k_sampling(logits: torch.Tensor, k: int) -> torch.Tensor:
    """Keep the k largest logits, mask the rest to -inf."""
    if k <= 0 or k >= logits.shape[-1]:
        return logits

    top_k_logits, top_k_indices = torch.topk(logits, k, dim=-1)

    mask = torch.full_like(logits, float('-inf'))
    mask.scatter_(-1, top_k_indices, top_k_logits)

    return mask


def top_p_sampling(logits: torch.Tensor, p: float) -> torch.Tensor:
    """Top-p (nucleus) filtering."""
    if p >= 1.0:
        return logits

    sorted_logits, sorted_indices = torch.sort(logits, descending=True, dim=-1)
    cumulative_probs = torch.cumsum(torch.softmax(sorted_logits, dim=-1), dim=-1)

    # Remove tokens once the cumulative probability passes p, always keep the first
    sorted_to_remove = cumulative_probs > p
    sorted_to_remove[..., 1:] = sorted_to_remove[..., :-1].clone()
    sorted_to_remove[..., 0] = False

    to_remove = sorted_to_remove.scatter(-1, sorted_indices, sorted_to_remove)
    return logits.masked_fill(to_remove, float('-inf'))


def apply_repetition_penalty(
    logits: torch.Tensor, previous_tokens: torch.Tensor, penalty: float
) -> torch.Tensor:
    """Apply repetition penalty to a [vocab] or [batch, vocab] logits tensor.

    previous_tokens has the same leading shape as logits minus the vocab axis
    plus a token axis ([n] or [batch, n]).
    """
    if penalty == 1.0 or previous_tokens.numel() == 0:
        return logits

    logits = logits.clone()
    previous = previous_tokens.long()
    scores = torch.gather(logits, -1, previous)
    scores = torch.where(scores > 0, scores / penalty, scores * penalty)
    logits.scatter_(-1, previous, scores)
    return logits


def sample(
    logits: torch.Tensor,
    params: SamplingParams,
    generator: Optional[torch.Generator] = None,
) -> torch.Tensor:
    """Sample next token ids from [batch, vocab] logits.

    Args:
        logits: Next-token logits
        params: Sampling parameters
        generator: Random generator, keeps seeded sampling local to one caller

    Returns:
        Token ids of shape [batch]
    """
    if params.is_greedy:
        return greedy_sampling(logits)

    if params.temperature != 1.0:
        logits = temperature_scaling(logits, params.temperature)

    if params.top_k > 0:
        logits = top_k_sampling(logits, params.top_k)

    if params.top_p < 1.0:
        logits = top_p_sampling(logits, params.top_p)

    probs = torch.softmax(logits.float(), dim=-1)
    return torch.multinomial(probs, num_samples=1, generator=generator).squeeze(-1)


def make_generator(params: SamplingParams) -> Optional[torch.Generator]:
    """Create a seeded generator, or None to use torch's global RNG."""
    if params.seed is None:
        return None
    generator = torch.Generator()
    generator.manual_seed(params.seed)
    return generator
