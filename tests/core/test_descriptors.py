"""Tests for ModelDescriptor, TokenizerDescriptor and TensorSpec."""

import json

import pytest

from textinfer_lite.core.descriptors import (
    ModelDescriptor,
    OutputKind,
    TensorSpec,
    TokenizerDescriptor,
)
from textinfer_lite.core.errors import ConfigError


class TestTensorSpec:
    """Test TensorSpec."""

    @pytest.mark.unit
    def test_defaults(self):
        spec = TensorSpec("input_ids")
        assert spec.dtype == "int64"
        assert spec.shape == (None, None)
        assert spec.fixed_batch_size is None
        assert spec.fixed_sequence_length is None

    @pytest.mark.unit
    def test_symbolic_axes_are_dynamic(self):
        """Test symbolic and non-positive axes normalize to None."""
        spec = TensorSpec("input_ids", shape=("batch", -1))
        assert spec.shape == (None, None)
        assert TensorSpec("input_ids", shape=(1, 128)).fixed_sequence_length == 128

    @pytest.mark.unit
    def test_from_dict(self):
        assert TensorSpec.from_dict("attention_mask") == TensorSpec("attention_mask")
        spec = TensorSpec.from_dict({"name": "input_ids", "dtype": "int32", "shape": [None, 64]})
        assert spec == TensorSpec("input_ids", "int32", (None, 64))


class TestModelDescriptor:
    """Test ModelDescriptor validation."""

    @pytest.mark.unit
    def test_defaults(self):
        descriptor = ModelDescriptor("models/bert.onnx")
        assert descriptor.name == "bert"
        assert descriptor.input_names == ("input_ids", "attention_mask")
        assert descriptor.output_kind is OutputKind.GENERATION
        assert descriptor.max_sequence_length == 512

    @pytest.mark.unit
    def test_output_kind_from_string(self):
        descriptor = ModelDescriptor("m.onnx", output_kind="Embedding")
        assert descriptor.output_kind is OutputKind.EMBEDDING

    @pytest.mark.unit
    def test_unknown_output_kind(self):
        with pytest.raises(ConfigError):
            ModelDescriptor("m.onnx", output_kind="translation")

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "kwargs",
        [
            {"max_sequence_length": 0},
            {"vocab_size": 0},
            {"inputs": (TensorSpec("attention_mask"),)},
            {"inputs": (TensorSpec("input_ids"), TensorSpec("input_ids"))},
            {"inputs": (TensorSpec("input_ids"), TensorSpec("pixel_values"))},
            {"inputs": (TensorSpec("input_ids", "float32"),)},
            {"inputs": (TensorSpec("input_ids", shape=(None, None, None)),)},
            {
                "inputs": (
                    TensorSpec("input_ids", shape=(None, 8)),
                    TensorSpec("attention_mask", shape=(None, 16)),
                )
            },
            {"max_sequence_length": 8, "inputs": (TensorSpec("input_ids", shape=(None, 16)),)},
        ],
    )
    def test_invalid_descriptors(self, kwargs):
        """Test inconsistent descriptors are rejected at construction."""
        with pytest.raises(ConfigError):
            ModelDescriptor("m.onnx", **kwargs)

    @pytest.mark.unit
    def test_fixed_axes(self):
        descriptor = ModelDescriptor(
            "m.onnx",
            inputs=(TensorSpec("input_ids", shape=(4, 32)), TensorSpec("attention_mask", shape=(4, 32))),
        )
        assert descriptor.fixed_batch_size == 4
        assert descriptor.fixed_sequence_length == 32

    @pytest.mark.unit
    def test_dict_round_trip(self):
        """Test to_dict output rebuilds an equal descriptor."""
        descriptor = ModelDescriptor(
            "m.onnx",
            max_sequence_length=128,
            inputs=("input_ids", "attention_mask", "token_type_ids"),
            output_name="logits",
            output_kind=OutputKind.CLASSIFICATION,
            vocab_size=30522,
        )
        data = json.loads(json.dumps(descriptor.to_dict()))
        assert ModelDescriptor.from_dict(data) == descriptor

    @pytest.mark.unit
    def test_from_dict_errors(self):
        with pytest.raises(ConfigError):
            ModelDescriptor.from_dict({"max_sequence_length": 8})
        with pytest.raises(ConfigError):
            ModelDescriptor.from_dict({"model_path": "m.onnx", "layers": 12})

    @pytest.mark.unit
    def test_from_json_file(self, tmp_path):
        path = tmp_path / "model.json"
        path.write_text(json.dumps({"model_path": "m.onnx", "output_kind": "embedding"}))
        assert ModelDescriptor.from_json_file(path).output_kind is OutputKind.EMBEDDING


class TestTokenizerDescriptor:
    """Test TokenizerDescriptor."""

    @pytest.mark.unit
    def test_defaults(self):
        descriptor = TokenizerDescriptor("tokenizer.json")
        assert descriptor.pad_token_id is None
        assert descriptor.add_bos_token
        assert descriptor.add_eos_token

    @pytest.mark.unit
    def test_negative_id_rejected(self):
        with pytest.raises(ConfigError):
            TokenizerDescriptor("tokenizer.json", pad_token_id=-1)

    @pytest.mark.unit
    def test_empty_path_rejected(self):
        with pytest.raises(ConfigError):
            TokenizerDescriptor("")

    @pytest.mark.unit
    def test_from_dict(self):
        descriptor = TokenizerDescriptor.from_dict({"tokenizer_path": "t.json", "eos_token_id": 2})
        assert descriptor.eos_token_id == 2
        assert TokenizerDescriptor.from_dict(descriptor.to_dict()) == descriptor
        with pytest.raises(ConfigError):
            TokenizerDescriptor.from_dict({"pad_token_id": 0})
        with pytest.raises(ConfigError):
            TokenizerDescriptor.from_dict({"tokenizer_path": "t.json", "lowercase": True})
