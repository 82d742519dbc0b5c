"""
Inference pipeline: text in, per-input results out.

The pipeline owns one TextEncoder, one TensorAssembler, one ResultDecoder
and one SessionPool for a single model. It holds no per-call state, so any
number of threads may call infer() concurrently; they only contend on the
session pool.
"""

import logging
import os
import threading
from typing import Dict, List, Optional, Sequence, Union

import torch

from textinfer_lite.batch.assembler import Batch, TensorAssembler
from textinfer_lite.core.config import RunnerConfig
from textinfer_lite.core.descriptors import ModelDescriptor, OutputKind, TokenizerDescriptor
from textinfer_lite.core.errors import (
    Cancelled,
    ConfigError,
    DecodeError,
    EncodeError,
    EngineFailure,
    InferenceError,
    LeaseTimeout,
    PoolClosed,
    PoolExhausted,
    ShapeMismatch,
)
from textinfer_lite.core.request import InferenceRequest, RequestState
from textinfer_lite.decoding.result_decoder import InferenceResult, ResultDecoder
from textinfer_lite.sampling.sampling import (
    SamplingParams,
    apply_repetition_penalty,
    make_generator,
    sample,
)
from textinfer_lite.scheduler import BatchingPolicy, get_policy
from textinfer_lite.session.backend import EngineBackend, GraphSignature
from textinfer_lite.session.handle import SessionHandle
from textinfer_lite.session.onnx_backend import OnnxRuntimeBackend
from textinfer_lite.session.pool import SessionPool, resolve_pool_size
from textinfer_lite.tokenization.text_encoder import (
    EncodedSequence,
    TextEncoder,
    load_tokenizer,
)

logger = logging.getLogger(__name__)


class InferencePipeline:
    """Loaded model + tokenizer, ready to serve infer() calls.

    Attributes:
        model: Model descriptor
        tokenizer_descriptor: Tokenizer descriptor paired with the model
        encoder: Text <-> token id conversion
        assembler: Builds padded batches
        decoder: Turns raw outputs into results
        pool: Session pool for the model
        policy: How one request's inputs are split into batches
        max_batch_size: Maximum inputs per native call
        lease_timeout: Default seconds to wait for a free session
    """

    def __init__(
        self,
        model: ModelDescriptor,
        tokenizer: TokenizerDescriptor,
        pool_size: int = 1,
        backend: Optional[EngineBackend] = None,
        max_batch_size: int = 8,
        batching: Union[str, BatchingPolicy] = "length",
        lease_timeout: Optional[float] = None,
        hf_tokenizer=None,
    ):
        """Load the tokenizer and the session pool, then validate the pairing.

        Args:
            model: Model descriptor
            tokenizer: Tokenizer descriptor
            pool_size: Concurrent sessions, bounded by available CPUs
            backend: Native engine, defaults to ONNX Runtime
            max_batch_size: Maximum inputs per native call
            batching: Policy name ("length", "fcfs") or a BatchingPolicy
            lease_timeout: Default seconds to wait for a free session
            hf_tokenizer: Already-loaded tokenizer to use instead of loading one

        Raises:
            ConfigError: If artifacts cannot be loaded or do not match
        """
        if max_batch_size <= 0:
            raise ConfigError(f"max_batch_size must be positive, got {max_batch_size}")
        self.model = model
        self.tokenizer_descriptor = tokenizer
        self.lease_timeout = lease_timeout

        pool_size = resolve_pool_size(pool_size)
        if backend is None:
            backend = OnnxRuntimeBackend(
                intra_op_num_threads=max(1, (os.cpu_count() or 1) // pool_size)
            )
        self.backend = backend

        if model.fixed_batch_size is not None:
            max_batch_size = min(max_batch_size, model.fixed_batch_size)
        self.max_batch_size = max_batch_size
        if isinstance(batching, str):
            try:
                batching = get_policy(batching)
            except ValueError as e:
                raise ConfigError(str(e)) from e
        self.policy = batching

        if hf_tokenizer is None:
            hf_tokenizer = load_tokenizer(tokenizer)
        self.encoder = TextEncoder(hf_tokenizer, tokenizer, model.max_sequence_length)
        self.assembler = TensorAssembler(model, self.encoder.pad_token_id)

        logger.info(
            "Loading %s with %s (pool_size=%d, max_batch_size=%d, batching=%s)",
            model.name, backend.name, pool_size, max_batch_size, self.policy.name,
        )
        self.pool = SessionPool(self._create_handle, pool_size, name=model.name)
        try:
            with self.pool.leased(timeout=0) as handle:
                signature = handle.signature
                output_name = handle.output_name
            self._validate_pairing(signature, output_name)
        except Exception:
            self.pool.shutdown(wait=False)
            raise
        self.decoder = ResultDecoder(model, self.encoder, output_name=output_name)

        self._stats_lock = threading.Lock()
        self._requests = 0
        self._inputs = 0
        self._failed_inputs = 0
        self._exhausted = False

    @classmethod
    def from_config(
        cls, config: RunnerConfig, backend: Optional[EngineBackend] = None
    ) -> "InferencePipeline":
        if backend is None:
            pool_size = resolve_pool_size(config.pool_size)
            backend = OnnxRuntimeBackend(
                use_cuda=config.use_cuda,
                use_coreml=config.use_coreml,
                intra_op_num_threads=(
                    config.intra_op_num_threads
                    or max(1, (os.cpu_count() or 1) // pool_size)
                ),
            )
        return cls(
            config.model,
            config.tokenizer,
            pool_size=config.pool_size,
            backend=backend,
            max_batch_size=config.max_batch_size,
            batching=config.batching,
            lease_timeout=config.lease_timeout,
        )

    def _create_handle(self, handle_id: int) -> SessionHandle:
        return SessionHandle(handle_id, self.backend, self.model)

    def _validate_pairing(self, signature: GraphSignature, output_name: str) -> None:
        """Check the tokenizer vocabulary fits the model's embedding table.

        The model vocabulary is the descriptor's vocab_size, or the last axis
        of a generation model's logits output when the graph fixes it.

        Raises:
            ConfigError: If a token id the tokenizer can produce is out of range
        """
        vocab_size = self.model.vocab_size
        output_shape = signature.outputs.get(output_name, ())
        if (
            vocab_size is None
            and self.model.output_kind is OutputKind.GENERATION
            and len(output_shape) == 3
            and output_shape[-1] is not None
        ):
            vocab_size = output_shape[-1]
        if vocab_size is None:
            logger.warning(
                "Vocabulary size of %s unknown, skipping tokenizer pairing check",
                self.model.name,
            )
            return

        if self.encoder.vocab_size > vocab_size:
            raise ConfigError(
                f"Tokenizer vocabulary ({self.encoder.vocab_size}) exceeds the "
                f"embedding table of {self.model.name} ({vocab_size})"
            )
        special = {
            "pad_token_id": self.encoder.pad_token_id,
            "bos_token_id": self.encoder.bos_token_id,
            "eos_token_id": self.encoder.eos_token_id,
            "unk_token_id": self.encoder.unk_token_id,
        }
        for attr, token_id in special.items():
            if token_id is not None and token_id >= vocab_size:
                raise ConfigError(
                    f"{attr} {token_id} is outside the vocabulary of "
                    f"{self.model.name} ({vocab_size})"
                )

    def _check_usable(self) -> None:
        if self._exhausted:
            raise PoolExhausted(
                f"All sessions for {self.model.name} are retired; reload the pipeline"
            )
        if self.pool.closed:
            raise PoolClosed(f"Pipeline for {self.model.name} is shut down")

    def infer(
        self, texts: Sequence[str], lease_timeout: Optional[float] = None
    ) -> List[InferenceResult]:
        """Run the model on a list of texts.

        Args:
            texts: Input texts
            lease_timeout: Seconds to wait for a free session, overrides the default

        Returns:
            One InferenceResult per text, result[i].index == i

        Raises:
            PoolExhausted: If the model has no sessions left
            PoolClosed: If the pipeline was shut down
        """
        if isinstance(texts, str):
            texts = [texts]
        return self.run_request(InferenceRequest(texts), lease_timeout)

    def run_request(
        self, request: InferenceRequest, lease_timeout: Optional[float] = None
    ) -> List[InferenceResult]:
        """Drive a request through encoding, batching, execution and decoding.

        Per-input failures are reported inside the results; a request always
        returns exactly one result per input.
        """
        self._check_usable()
        timeout = self.lease_timeout if lease_timeout is None else lease_timeout
        results: Dict[int, InferenceResult] = {}

        try:
            request.transition(RequestState.ENCODING)
            sequences = self._encode_all(request, results)

            request.transition(RequestState.BATCHING)
            groups = self.policy.plan(sequences, self.max_batch_size) if sequences else []
            for n, group in enumerate(groups):
                if n:
                    request.transition(RequestState.BATCHING)
                for result in self._run_group(request, group, timeout):
                    results[result.index] = result
        except Cancelled as e:
            logger.info("Request %s cancelled", request.request_id)
            for i in range(len(request)):
                results.setdefault(i, ResultDecoder.failed(i, e))
        except PoolExhausted:
            self._exhausted = True
            request.fail()
            raise
        except Exception:
            request.fail()
            raise

        ordered = [results[i] for i in range(len(request))]
        failed = sum(1 for r in ordered if not r.ok)
        if not request.state.is_terminal:
            if failed:
                request.fail()
            else:
                request.transition(RequestState.COMPLETE)

        with self._stats_lock:
            self._requests += 1
            self._inputs += len(ordered)
            self._failed_inputs += failed
        return ordered

    def _encode_all(
        self, request: InferenceRequest, results: Dict[int, InferenceResult]
    ) -> List[EncodedSequence]:
        sequences = []
        for i, text in enumerate(request.texts):
            try:
                sequences.append(self.encoder.encode(text, index=i))
            except EncodeError as e:
                logger.warning("Request %s input %d: %s", request.request_id, i, e)
                results[i] = ResultDecoder.failed(i, e)
        return sequences

    def _run_group(
        self,
        request: InferenceRequest,
        group: List[EncodedSequence],
        timeout: Optional[float],
    ) -> List[InferenceResult]:
        try:
            batch = self.assembler.assemble(group)
        except ValueError as e:
            error = ShapeMismatch(str(e), cause=e)
            return [ResultDecoder.failed(seq, error) for seq in group]

        request.transition(RequestState.EXECUTING)
        try:
            handle = self.pool.lease(timeout)
        except LeaseTimeout as e:
            logger.warning("Request %s: %s", request.request_id, e)
            return [ResultDecoder.failed(seq, e) for seq in group]

        logger.debug(
            "Request %s: running %d inputs (padded_length=%d) on handle %d",
            request.request_id, batch.size, batch.padded_length, handle.handle_id,
        )
        raw = None
        error: Optional[InferenceError] = None
        try:
            raw = handle.run(batch)
        except (EngineFailure, ShapeMismatch) as e:
            error = e
        finally:
            # An unhealthy handle is retired; this may raise PoolExhausted
            if handle.healthy:
                self.pool.release(handle)
            else:
                self.pool.retire(handle)

        if error is not None:
            logger.warning("Request %s: %s", request.request_id, error)
            return [ResultDecoder.failed(seq, error) for seq in group]

        request.transition(RequestState.DECODING)
        try:
            return self.decoder.decode(batch, raw)
        except (ShapeMismatch, DecodeError) as e:
            logger.warning("Request %s: %s", request.request_id, e)
            return [ResultDecoder.failed(seq, e) for seq in group]

    def generate(
        self,
        texts: Sequence[str],
        max_new_tokens: int = 32,
        sampling_params: Optional[SamplingParams] = None,
        lease_timeout: Optional[float] = None,
        request: Optional[InferenceRequest] = None,
    ) -> List[InferenceResult]:
        """Autoregressively extend each text with a logits-output model.

        One session is leased for the whole loop. A sequence stops at eos,
        once its continuation contains one of sampling_params.stop_sequences
        (kept in the output), after max_new_tokens, or at the model's
        max_sequence_length.

        Args:
            texts: Prompts
            max_new_tokens: Maximum tokens to generate per prompt
            sampling_params: Sampling settings, greedy by default
            lease_timeout: Seconds to wait for a free session
            request: Request object to track and cancel the call

        Returns:
            One result per prompt holding only the generated continuation

        Raises:
            ConfigError: If the model is not a generation model
        """
        if self.model.output_kind is not OutputKind.GENERATION:
            raise ConfigError(f"{self.model.name} is not a generation model")
        if max_new_tokens <= 0:
            raise ValueError(f"max_new_tokens must be positive, got {max_new_tokens}")
        self._check_usable()
        if isinstance(texts, str):
            texts = [texts]

        params = sampling_params or SamplingParams(temperature=0.0)
        generator = make_generator(params)
        timeout = self.lease_timeout if lease_timeout is None else lease_timeout
        request = request or InferenceRequest(texts)
        results: Dict[int, InferenceResult] = {}

        try:
            request.transition(RequestState.ENCODING)
            prompts = {
                seq.index: seq
                for seq in self._encode_all(request, results)
            }
            request.transition(RequestState.BATCHING)
            if prompts:
                request.transition(RequestState.EXECUTING)
                generated = self._generation_loop(
                    request, prompts, max_new_tokens, params, generator, timeout, results
                )
                request.transition(RequestState.DECODING)
                for index, tokens in generated.items():
                    try:
                        text = self.encoder.decode(tokens)
                    except DecodeError as e:
                        logger.warning("Request %s input %d: %s", request.request_id, index, e)
                        results[index] = ResultDecoder.failed(prompts[index], e)
                        continue
                    results[index] = InferenceResult(
                        index=index,
                        text=text,
                        token_ids=self.encoder.strip_special(tokens),
                        truncated=prompts[index].truncated,
                    )
        except Cancelled as e:
            for i in range(len(request)):
                results.setdefault(i, ResultDecoder.failed(i, e))
        except PoolExhausted:
            self._exhausted = True
            request.fail()
            raise
        except Exception:
            request.fail()
            raise

        ordered = [results[i] for i in range(len(request))]
        if not request.state.is_terminal:
            if all(r.ok for r in ordered):
                request.transition(RequestState.COMPLETE)
            else:
                request.fail()
        return ordered

    def _generation_loop(
        self,
        request: InferenceRequest,
        prompts: Dict[int, EncodedSequence],
        max_new_tokens: int,
        params: SamplingParams,
        generator: Optional[torch.Generator],
        timeout: Optional[float],
        results: Dict[int, InferenceResult],
    ) -> Dict[int, List[int]]:
        # Prompts keep their bos but not their eos
        contexts = {
            index: list(seq.token_ids[: len(seq) - seq.num_special_suffix])
            for index, seq in prompts.items()
        }
        generated: Dict[int, List[int]] = {index: [] for index in prompts}
        active = sorted(prompts)
        limit = self.model.fixed_sequence_length or self.model.max_sequence_length
        active = [i for i in active if len(contexts[i]) < limit]

        try:
            with self.pool.leased(timeout) as handle:
                for _ in range(max_new_tokens):
                    if not active:
                        break
                    if request.cancelled:
                        raise Cancelled(f"Request {request.request_id} was cancelled")
                    finished = set()
                    for start in range(0, len(active), self.max_batch_size):
                        group = [
                            EncodedSequence(
                                token_ids=tuple(contexts[i]),
                                original_length=prompts[i].original_length,
                                index=i,
                                num_special_prefix=prompts[i].num_special_prefix,
                            )
                            for i in active[start:start + self.max_batch_size]
                        ]
                        batch = self.assembler.assemble(group)
                        next_tokens = self._next_tokens(handle, batch, params, generator)
                        for seq, token in zip(batch.sequences, next_tokens):
                            if token == self.encoder.eos_token_id:
                                finished.add(seq.index)
                                continue
                            contexts[seq.index].append(token)
                            generated[seq.index].append(token)
                            if len(contexts[seq.index]) >= limit or self._hit_stop(
                                generated[seq.index], params
                            ):
                                finished.add(seq.index)
                    active = [i for i in active if i not in finished]
        except (LeaseTimeout, EngineFailure, ShapeMismatch, DecodeError) as e:
            logger.warning("Request %s: %s", request.request_id, e)
            for index in prompts:
                results[index] = ResultDecoder.failed(prompts[index], e)
            return {}
        return generated

    def _hit_stop(self, tokens: List[int], params: SamplingParams) -> bool:
        if not params.stop_sequences:
            return False
        text = self.encoder.decode(tokens)
        return any(stop in text for stop in params.stop_sequences)

    def _next_tokens(
        self,
        handle: SessionHandle,
        batch: Batch,
        params: SamplingParams,
        generator: Optional[torch.Generator],
    ) -> List[int]:
        logits = self.decoder.select_output(handle.run(batch))
        if logits.dim() != 3 or not logits.is_floating_point():
            raise ShapeMismatch(
                f"generate() needs logits [B, S, V], got {logits.dtype} {tuple(logits.shape)}"
            )
        rows = []
        for row, seq in enumerate(batch.sequences):
            last = logits[row, len(seq) - 1].float()
            if params.repetition_penalty != 1.0:
                previous = torch.tensor(seq.token_ids, dtype=torch.long)
                last = apply_repetition_penalty(last, previous, params.repetition_penalty)
            rows.append(last)
        return sample(torch.stack(rows), params, generator).tolist()

    def stats(self) -> Dict[str, float]:
        """Get pipeline statistics.

        Returns:
            Pool statistics plus requests, inputs and failed_inputs counters
        """
        stats = dict(self.pool.get_stats())
        with self._stats_lock:
            stats.update(
                requests=self._requests,
                inputs=self._inputs,
                failed_inputs=self._failed_inputs,
            )
        return stats

    def shutdown(self, wait: bool = True, timeout: Optional[float] = None) -> None:
        """Drain the pool and release every native session."""
        logger.info("Shutting down pipeline for %s", self.model.name)
        self.pool.shutdown(wait=wait, timeout=timeout)

    def __enter__(self) -> "InferencePipeline":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()


# The CLI layer holds on to the pipeline object itself; there is no registry.
PipelineHandle = InferencePipeline


def load_model(
    model: ModelDescriptor,
    tokenizer: TokenizerDescriptor,
    pool_size: int = 1,
    **kwargs,
) -> PipelineHandle:
    """Load a model and its tokenizer into a new pipeline.

    Args:
        model: Model descriptor
        tokenizer: Tokenizer descriptor
        pool_size: Concurrent sessions
        **kwargs: Forwarded to InferencePipeline

    Returns:
        Handle to pass to infer() and shutdown()
    """
    return InferencePipeline(model, tokenizer, pool_size=pool_size, **kwargs)


def infer(
    handle: PipelineHandle,
    texts: Sequence[str],
    lease_timeout: Optional[float] = None,
) -> List[InferenceResult]:
    """Run a loaded pipeline on texts; see InferencePipeline.infer."""
    return handle.infer(texts, lease_timeout=lease_timeout)


def shutdown(handle: PipelineHandle) -> None:
    """Drain the pipeline's pool and release its native resources."""
    handle.shutdown()
