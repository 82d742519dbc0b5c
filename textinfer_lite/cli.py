"""
Command-line runner.

    textinfer --model ./my-model --text "hello world" --text "second input"
    textinfer --config runner.json --input-file inputs.txt --output-file out.jsonl

Prints one JSON line per input, in input order. The exit code is 1 when any
input failed and 2 when the model could not be loaded.
"""

import argparse
import dataclasses
import json
import logging
import sys
from typing import List, Optional, Sequence

from textinfer_lite.core.config import RunnerConfig
from textinfer_lite.core.errors import InferenceError
from textinfer_lite.core.pipeline import InferencePipeline
from textinfer_lite.sampling.sampling import SamplingParams
from textinfer_lite.utils.logging import setup_logging

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="textinfer", description="Run an ONNX NLP model on text inputs"
    )
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--config", type=str, help="Path to a runner config JSON file")
    source.add_argument(
        "--model", type=str, help="Model directory with model.onnx and tokenizer.json"
    )
    parser.add_argument(
        "--text", action="append", default=[], help="Input text, may be repeated"
    )
    parser.add_argument(
        "--input-file", type=str, help="File with one input per line, '-' for stdin"
    )
    parser.add_argument("--output-file", type=str, help="Write JSON lines here instead of stdout")
    parser.add_argument("--pool-size", type=int, help="Concurrent sessions")
    parser.add_argument("--batch-size", type=int, help="Maximum inputs per native call")
    parser.add_argument("--timeout", type=float, help="Seconds to wait for a free session")
    parser.add_argument(
        "--generate", type=int, metavar="N",
        help="Generate up to N new tokens per input instead of a single pass",
    )
    parser.add_argument(
        "--temperature", type=float, default=0.0,
        help="Sampling temperature for --generate, 0 is greedy",
    )
    parser.add_argument(
        "--top-k", type=int, default=0,
        help="Sample only from the k most likely tokens, 0 disables",
    )
    parser.add_argument(
        "--top-p", type=float, default=1.0,
        help="Nucleus sampling probability mass, 1.0 disables",
    )
    parser.add_argument("--seed", type=int, help="Random seed for --generate sampling")
    parser.add_argument(
        "--stop", action="append", default=[],
        help="Stop generating once the continuation contains this text, may be repeated",
    )
    parser.add_argument("--log-level", type=str, default=None, help="Logging level")
    return parser


def load_config(args: argparse.Namespace) -> RunnerConfig:
    """Build the runner config from --config/--model plus command-line overrides."""
    if args.config:
        config = RunnerConfig.from_json_file(args.config)
    else:
        config = RunnerConfig.from_pretrained(args.model)

    overrides = {}
    if args.pool_size is not None:
        overrides["pool_size"] = args.pool_size
    if args.batch_size is not None:
        overrides["max_batch_size"] = args.batch_size
    if args.timeout is not None:
        overrides["lease_timeout"] = args.timeout
    if overrides:
        config = dataclasses.replace(config, **overrides)
    return config


def read_inputs(args: argparse.Namespace) -> List[str]:
    texts = list(args.text)
    if args.input_file:
        if args.input_file == "-":
            lines = sys.stdin.read().splitlines()
        else:
            with open(args.input_file, "r", encoding="utf-8") as f:
                lines = f.read().splitlines()
        texts.extend(lines)
    return texts


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        setup_logging(args.log_level)
    except ValueError as e:
        parser.error(str(e))

    params = None
    if args.generate is not None:
        if args.generate <= 0:
            parser.error(f"--generate must be positive, got {args.generate}")
        try:
            params = SamplingParams(
                temperature=args.temperature,
                top_k=args.top_k,
                top_p=args.top_p,
                seed=args.seed,
                stop_sequences=args.stop,
            )
        except ValueError as e:
            parser.error(str(e))

    texts = read_inputs(args)
    if not texts:
        parser.error("no inputs: pass --text or --input-file")

    try:
        config = load_config(args)
        pipeline = InferencePipeline.from_config(config)
    except InferenceError as e:
        logger.error("Cannot load model: %s", e)
        return 2

    try:
        if params is not None:
            results = pipeline.generate(texts, max_new_tokens=args.generate, sampling_params=params)
        else:
            results = pipeline.infer(texts)
    except InferenceError as e:
        logger.error("Inference aborted: %s", e)
        return 2
    finally:
        pipeline.shutdown()

    lines = [json.dumps(result.to_dict()) for result in results]
    if args.output_file:
        with open(args.output_file, "w", encoding="utf-8") as f:
            f.write("\n".join(lines) + "\n")
    else:
        for line in lines:
            print(line)

    failed = sum(1 for r in results if not r.ok)
    if failed:
        logger.warning("%d of %d inputs failed", failed, len(results))
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
