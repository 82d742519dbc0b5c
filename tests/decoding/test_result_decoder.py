"""Tests for ResultDecoder and InferenceResult."""

import pytest
import torch

from textinfer_lite.batch.assembler import TensorAssembler
from textinfer_lite.core.descriptors import OutputKind
from textinfer_lite.core.errors import EncodeError, ShapeMismatch
from textinfer_lite.decoding.result_decoder import InferenceResult, ResultDecoder
from tests.utils.fakes import BOS_ID, EOS_ID, PAD_ID, VOCAB_SIZE


@pytest.fixture
def batch(encoder, model_descriptor):
    """Batch of three inputs in shuffled row order."""
    seqs = [
        encoder.encode("the quick brown fox", index=2),
        encoder.encode("hello world", index=0),
        encoder.encode("", index=1),
    ]
    return TensorAssembler(model_descriptor, PAD_ID).assemble(seqs)


def decoder_for(encoder, model_descriptor, kind: OutputKind, output_name=None) -> ResultDecoder:
    return ResultDecoder(
        model_descriptor.with_overrides(output_kind=kind), encoder, output_name=output_name
    )


class TestGeneration:
    """Test decoding generation outputs."""

    @pytest.mark.unit
    def test_token_ids_output(self, encoder, model_descriptor, batch):
        """Test [B, S] id output is decoded per row and reordered by index."""
        decoder = decoder_for(encoder, model_descriptor, OutputKind.GENERATION)
        raw = {"token_ids": batch.input_ids * batch.attention_mask}

        results = decoder.decode(batch, raw)

        assert [r.index for r in results] == [0, 1, 2]
        assert [r.text for r in results] == ["hello world", "", "the quick brown fox"]
        assert results[0].token_ids == (4, 5)
        assert all(r.ok for r in results)

    @pytest.mark.unit
    def test_logits_output_is_reduced_greedily(self, encoder, model_descriptor, batch):
        """Test [B, S, V] logits are reduced by argmax."""
        decoder = decoder_for(encoder, model_descriptor, OutputKind.GENERATION)
        logits = torch.nn.functional.one_hot(batch.input_ids, VOCAB_SIZE).float()

        results = decoder.decode(batch, {"logits": logits})

        assert results[0].text == "hello world"
        assert results[2].text == "the quick brown fox"

    @pytest.mark.unit
    def test_unaligned_output_strips_trailing_padding(self, encoder, model_descriptor, batch):
        """Test ids of a different length than the input have trailing pad removed."""
        decoder = decoder_for(encoder, model_descriptor, OutputKind.GENERATION)
        generated = torch.full((3, 10), PAD_ID, dtype=torch.long)
        generated[0, :3] = torch.tensor([BOS_ID, 6, EOS_ID])
        generated[1, :2] = torch.tensor([4, 5])

        results = decoder.decode(batch, {"token_ids": generated})

        # Row 0 belongs to input 2, row 1 to input 0
        assert results[2].text == "the"
        assert results[0].text == "hello world"
        assert results[1].text == ""

    @pytest.mark.unit
    def test_float_ids_rejected(self, encoder, model_descriptor, batch):
        """Test a rank-2 float output is not a valid generation output."""
        decoder = decoder_for(encoder, model_descriptor, OutputKind.GENERATION)
        with pytest.raises(ShapeMismatch):
            decoder.decode(batch, {"token_ids": batch.input_ids.float()})


class TestEmbedding:
    """Test decoding embedding outputs."""

    @pytest.mark.unit
    def test_pooled_output_passes_through(self, encoder, model_descriptor, batch):
        """Test a [B, H] output is returned per row."""
        decoder = decoder_for(encoder, model_descriptor, OutputKind.EMBEDDING)
        pooled = torch.arange(12, dtype=torch.float32).reshape(3, 4)

        results = decoder.decode(batch, {"embeddings": pooled})

        assert results[2].vector.tolist() == [0.0, 1.0, 2.0, 3.0]
        assert results[0].vector.tolist() == [4.0, 5.0, 6.0, 7.0]
        assert results[0].text is None

    @pytest.mark.unit
    def test_hidden_states_are_mean_pooled_over_real_tokens(
        self, encoder, model_descriptor, batch
    ):
        """Test [B, S, H] hidden states average only unpadded positions."""
        decoder = decoder_for(encoder, model_descriptor, OutputKind.EMBEDDING)
        hidden = batch.input_ids.float().unsqueeze(-1).repeat(1, 1, 2)

        results = decoder.decode(batch, {"last_hidden_state": hidden})

        # "hello world" -> [bos=2, 4, 5, eos=3]
        assert results[0].vector.tolist() == [3.5, 3.5]
        # "" -> [bos=2, eos=3]
        assert results[1].vector.tolist() == [2.5, 2.5]

    @pytest.mark.unit
    def test_hidden_states_length_must_match(self, encoder, model_descriptor, batch):
        decoder = decoder_for(encoder, model_descriptor, OutputKind.EMBEDDING)
        hidden = torch.zeros(3, batch.padded_length + 1, 2)
        with pytest.raises(ShapeMismatch):
            decoder.decode(batch, {"last_hidden_state": hidden})


class TestClassification:
    """Test decoding classification outputs."""

    @pytest.mark.unit
    def test_label_is_argmax(self, encoder, model_descriptor, batch):
        """Test each row gets its logits and argmax label."""
        decoder = decoder_for(encoder, model_descriptor, OutputKind.CLASSIFICATION)
        logits = torch.tensor([[0.1, 0.9], [0.8, 0.2], [0.3, 0.7]])

        results = decoder.decode(batch, {"logits": logits})

        assert [r.label for r in results] == [0, 1, 1]
        assert results[0].vector.tolist() == pytest.approx([0.8, 0.2])

    @pytest.mark.unit
    def test_rank_must_be_two(self, encoder, model_descriptor, batch):
        decoder = decoder_for(encoder, model_descriptor, OutputKind.CLASSIFICATION)
        with pytest.raises(ShapeMismatch):
            decoder.decode(batch, {"logits": torch.zeros(3, 2, 2)})


class TestOutputSelection:
    """Test choosing and validating the output tensor."""

    @pytest.mark.unit
    def test_named_output(self, encoder, model_descriptor, batch):
        """Test the configured output is used among several."""
        decoder = decoder_for(encoder, model_descriptor, OutputKind.GENERATION, "ids")
        raw = {"ids": batch.input_ids, "other": torch.zeros(1)}
        assert decoder.decode(batch, raw)[0].text == "hello world"

    @pytest.mark.unit
    def test_missing_named_output(self, encoder, model_descriptor, batch):
        decoder = decoder_for(encoder, model_descriptor, OutputKind.GENERATION, "ids")
        with pytest.raises(ShapeMismatch):
            decoder.decode(batch, {"other": batch.input_ids})

    @pytest.mark.unit
    def test_ambiguous_outputs(self, encoder, model_descriptor, batch):
        decoder = decoder_for(encoder, model_descriptor, OutputKind.GENERATION)
        with pytest.raises(ShapeMismatch):
            decoder.decode(batch, {"a": batch.input_ids, "b": batch.input_ids})

    @pytest.mark.unit
    def test_batch_axis_must_match(self, encoder, model_descriptor, batch):
        """Test an output with the wrong number of rows is a ShapeMismatch."""
        decoder = decoder_for(encoder, model_descriptor, OutputKind.GENERATION)
        with pytest.raises(ShapeMismatch):
            decoder.decode(batch, {"token_ids": batch.input_ids[:2]})


class TestInferenceResult:
    """Test InferenceResult helpers."""

    @pytest.mark.unit
    def test_failed_result(self, encoder):
        """Test failed() builds an error result from a sequence or an index."""
        error = EncodeError("bad input")

        from_seq = ResultDecoder.failed(encoder.encode("hello", index=4), error)
        from_index = ResultDecoder.failed(5, error)

        assert from_seq.index == 4 and not from_seq.ok
        assert from_index.index == 5 and from_index.error is error

    @pytest.mark.unit
    def test_to_dict(self):
        """Test results render to plain dicts with the error kind."""
        ok = InferenceResult(index=0, text="hello", token_ids=(4,))
        bad = InferenceResult(index=1, error=EncodeError("bad input"))

        assert ok.to_dict() == {
            "index": 0, "truncated": False, "text": "hello", "token_ids": [4],
        }
        assert bad.to_dict()["error"] == {"kind": "EncodeError", "message": "bad input"}
