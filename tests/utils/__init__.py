"""Test utilities for textinfer_lite."""

from tests.utils.fakes import (
    BOS_ID,
    EOS_ID,
    PAD_ID,
    UNK_ID,
    VOCAB,
    VOCAB_SIZE,
    FakeBackend,
    FakeSession,
    echo_ids,
    fail_session,
    fail_when_contains,
    id_hidden_states,
    length_classifier,
    make_signature,
    next_letter_logits,
    one_hot_logits,
)

__all__ = [
    # Token ids
    "BOS_ID",
    "EOS_ID",
    "PAD_ID",
    "UNK_ID",
    "VOCAB",
    "VOCAB_SIZE",
    # Fake engine
    "FakeBackend",
    "FakeSession",
    "make_signature",
    "fail_session",
    "fail_when_contains",
    # Model functions
    "echo_ids",
    "id_hidden_states",
    "length_classifier",
    "next_letter_logits",
    "one_hot_logits",
]
