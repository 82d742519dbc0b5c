"""
Runner configuration.

RunnerConfig bundles the model and tokenizer descriptors with the pool and
batching settings. It can be read from a JSON file or from a model directory
containing textinfer_config.json next to the artifacts.
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Union

from textinfer_lite.core.descriptors import ModelDescriptor, TokenizerDescriptor
from textinfer_lite.core.errors import ConfigError

CONFIG_NAME = "textinfer_config.json"
DEFAULT_MODEL_FILE = "model.onnx"
DEFAULT_TOKENIZER_FILE = "tokenizer.json"


@dataclass
class RunnerConfig:
    """Configuration for loading and running one model.

    Attributes:
        model: Model descriptor
        tokenizer: Tokenizer descriptor paired with the model
        pool_size: Concurrent sessions, bounded by available CPUs at load
        max_batch_size: Maximum inputs per native call
        batching: Batching policy name ("length" or "fcfs")
        lease_timeout: Seconds to wait for a free session, None waits forever
        use_cuda: Request the CUDA execution provider
        use_coreml: Request the CoreML execution provider
        intra_op_num_threads: Threads per operator, None splits CPUs across the pool
    """

    model: ModelDescriptor
    tokenizer: TokenizerDescriptor
    pool_size: int = 1
    max_batch_size: int = 8
    batching: str = "length"
    lease_timeout: Optional[float] = None
    use_cuda: bool = False
    use_coreml: bool = False
    intra_op_num_threads: Optional[int] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self._validate()

    def _validate(self) -> None:
        """Validate runner settings.

        Raises:
            ConfigError: If a setting is out of range.
        """
        if self.pool_size <= 0:
            raise ConfigError(f"pool_size must be positive, got {self.pool_size}")
        if self.max_batch_size <= 0:
            raise ConfigError(
                f"max_batch_size must be positive, got {self.max_batch_size}"
            )
        if self.batching not in ("length", "fcfs"):
            raise ConfigError(
                f"batching must be 'length' or 'fcfs', got {self.batching!r}"
            )
        if self.lease_timeout is not None and self.lease_timeout < 0:
            raise ConfigError(
                f"lease_timeout must be >= 0, got {self.lease_timeout}"
            )
        if self.intra_op_num_threads is not None and self.intra_op_num_threads <= 0:
            raise ConfigError(
                f"intra_op_num_threads must be positive, got {self.intra_op_num_threads}"
            )

    @classmethod
    def from_dict(
        cls, data: Dict[str, Any], base_dir: Optional[Union[str, Path]] = None
    ) -> "RunnerConfig":
        """Build a config from a parsed mapping.

        Relative artifact paths are resolved against base_dir when given.

        Args:
            data: Mapping with "model" and "tokenizer" sections
            base_dir: Directory relative paths are resolved against

        Returns:
            Validated RunnerConfig

        Raises:
            ConfigError: If sections are missing or values are invalid
        """
        data = dict(data)
        try:
            model_data = dict(data.pop("model"))
            tokenizer_data = dict(data.pop("tokenizer"))
        except KeyError as e:
            raise ConfigError(f"Config is missing the {e.args[0]!r} section") from e

        if base_dir is not None:
            base = Path(base_dir)
            model_data["model_path"] = str(
                base / model_data.get("model_path", DEFAULT_MODEL_FILE)
            )
            tokenizer_data["tokenizer_path"] = str(
                base / tokenizer_data.get("tokenizer_path", DEFAULT_TOKENIZER_FILE)
            )

        known = {
            "pool_size", "max_batch_size", "batching", "lease_timeout",
            "use_cuda", "use_coreml", "intra_op_num_threads",
        }
        extra = {k: v for k, v in data.items() if k not in known}
        kwargs = {k: v for k, v in data.items() if k in known}
        return cls(
            model=ModelDescriptor.from_dict(model_data),
            tokenizer=TokenizerDescriptor.from_dict(tokenizer_data),
            extra=extra,
            **kwargs,
        )

    @classmethod
    def from_json_file(cls, path: Union[str, Path]) -> "RunnerConfig":
        """Load a config file; relative artifact paths resolve against its directory."""
        path = Path(path)
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(f"Cannot read config {path}: {e}") from e
        return cls.from_dict(data, base_dir=path.parent)

    @classmethod
    def from_pretrained(cls, model_dir: Union[str, Path]) -> "RunnerConfig":
        """Load the config of a model directory.

        The directory holds textinfer_config.json plus the artifacts it
        names; without a config file, model.onnx and tokenizer.json with
        default settings are assumed.

        Args:
            model_dir: Path to the model directory

        Returns:
            RunnerConfig with absolute artifact paths
        """
        model_dir = Path(model_dir)
        if not model_dir.is_dir():
            raise ConfigError(f"Model directory not found: {model_dir}")
        config_file = model_dir / CONFIG_NAME
        if config_file.is_file():
            return cls.from_json_file(config_file)
        return cls.from_dict({"model": {}, "tokenizer": {}}, base_dir=model_dir)

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to a dictionary.

        Returns:
            Dictionary containing all configuration parameters.
        """
        data = {
            "model": self.model.to_dict(),
            "tokenizer": self.tokenizer.to_dict(),
            "pool_size": self.pool_size,
            "max_batch_size": self.max_batch_size,
            "batching": self.batching,
            "lease_timeout": self.lease_timeout,
            "use_cuda": self.use_cuda,
            "use_coreml": self.use_coreml,
            "intra_op_num_threads": self.intra_op_num_threads,
        }
        data.update(self.extra)
        return data
