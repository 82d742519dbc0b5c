"""
Pytest configuration and shared fixtures for textinfer-lite tests.

This module provides reusable fixtures for testing, including:
- A tiny word-level tokenizer saved as tokenizer.json
- Model and tokenizer descriptors matching it
- A TextEncoder and a pipeline factory running on the fake engine backend
"""

import os
from typing import Callable

import pytest
from tokenizers import Tokenizer
from tokenizers.models import WordLevel
from tokenizers.pre_tokenizers import WhitespaceSplit

from textinfer_lite.core.descriptors import ModelDescriptor, TokenizerDescriptor
from textinfer_lite.core.pipeline import InferencePipeline
from textinfer_lite.tokenization.text_encoder import TextEncoder, load_tokenizer
from tests.utils.fakes import (
    BOS_ID,
    EOS_ID,
    PAD_ID,
    UNK_ID,
    VOCAB,
    VOCAB_SIZE,
    FakeBackend,
)


# Force CPU-only testing by disabling CUDA
os.environ["CUDA_VISIBLE_DEVICES"] = ""

MAX_SEQUENCE_LENGTH = 16


@pytest.fixture(scope="session")
def tokenizer_file(tmp_path_factory) -> str:
    """
    Build and save a whitespace word-level tokenizer (session-scoped).

    Every word in VOCAB maps to its list position; anything else maps to
    <unk>. Decoding joins words with single spaces.

    Returns:
        str: Path to the saved tokenizer.json
    """
    tokenizer = Tokenizer(
        WordLevel(vocab={word: i for i, word in enumerate(VOCAB)}, unk_token="<unk>")
    )
    tokenizer.pre_tokenizer = WhitespaceSplit()
    path = tmp_path_factory.mktemp("tokenizer") / "tokenizer.json"
    tokenizer.save(str(path))
    return str(path)


@pytest.fixture(scope="session")
def tokenizer_descriptor(tokenizer_file: str) -> TokenizerDescriptor:
    return TokenizerDescriptor(
        tokenizer_path=tokenizer_file,
        pad_token_id=PAD_ID,
        unk_token_id=UNK_ID,
        bos_token_id=BOS_ID,
        eos_token_id=EOS_ID,
    )


@pytest.fixture(scope="session")
def hf_tokenizer(tokenizer_descriptor: TokenizerDescriptor):
    """Tokenizer loaded once through the production loading path."""
    return load_tokenizer(tokenizer_descriptor)


@pytest.fixture
def model_descriptor(tmp_path) -> ModelDescriptor:
    """Generation model descriptor; the path is never opened by the fake backend."""
    return ModelDescriptor(
        model_path=str(tmp_path / "model.onnx"),
        max_sequence_length=MAX_SEQUENCE_LENGTH,
        vocab_size=VOCAB_SIZE,
    )


@pytest.fixture
def encoder(hf_tokenizer, tokenizer_descriptor: TokenizerDescriptor) -> TextEncoder:
    return TextEncoder(hf_tokenizer, tokenizer_descriptor, MAX_SEQUENCE_LENGTH)


@pytest.fixture
def many_cpus(monkeypatch) -> None:
    """Pretend the machine has 8 CPUs so pool sizes are not bounded in tests."""
    monkeypatch.setattr(os, "cpu_count", lambda: 8)


@pytest.fixture
def make_pipeline(
    hf_tokenizer, tokenizer_descriptor: TokenizerDescriptor, model_descriptor: ModelDescriptor
) -> Callable[..., InferencePipeline]:
    """
    Factory for pipelines running on FakeBackend.

    Example:
        def test_echo(make_pipeline):
            pipeline = make_pipeline(pool_size=1)
            assert pipeline.infer(["hello"])[0].text == "hello"

    All pipelines created by the factory are shut down after the test.
    """
    pipelines = []

    def _make(backend=None, model=None, **kwargs) -> InferencePipeline:
        kwargs.setdefault("hf_tokenizer", hf_tokenizer)
        pipeline = InferencePipeline(
            model or model_descriptor,
            tokenizer_descriptor,
            backend=backend if backend is not None else FakeBackend(),
            **kwargs,
        )
        pipelines.append(pipeline)
        return pipeline

    yield _make

    for pipeline in pipelines:
        pipeline.shutdown(wait=False)
