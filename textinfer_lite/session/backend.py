"""
Capability interface to the native inference engine.

The pipeline never touches an engine API directly: it loads opaque native
sessions and runs forward passes through an EngineBackend. OnnxRuntimeBackend
is the production implementation; tests substitute a fake.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from textinfer_lite.core.descriptors import ModelDescriptor

Shape = Tuple[Optional[int], ...]


@dataclass(frozen=True)
class GraphSignature:
    """Inputs and outputs a loaded model actually exposes.

    Attributes:
        inputs: Input name -> (dtype, shape), None marks a dynamic axis
        outputs: Output name -> shape, in graph order
    """

    inputs: Dict[str, Tuple[str, Shape]] = field(default_factory=dict)
    outputs: Dict[str, Shape] = field(default_factory=dict)

    @property
    def output_names(self) -> List[str]:
        return list(self.outputs)


class EngineBackend(ABC):
    """Abstract native engine.

    Implementations must allow different native sessions to run concurrently.
    A single native session is never run concurrently by the pipeline.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Get the backend name.

        Returns:
            Backend name string
        """
        pass

    @abstractmethod
    def load(self, descriptor: ModelDescriptor) -> Any:
        """Load the model artifact into a new native session.

        Args:
            descriptor: Model to load

        Returns:
            Opaque native session

        Raises:
            ConfigError: If the artifact cannot be loaded
        """
        pass

    @abstractmethod
    def describe(self, native: Any) -> GraphSignature:
        """Report the inputs and outputs of a loaded native session."""
        pass

    @abstractmethod
    def run(
        self,
        native: Any,
        feeds: Dict[str, np.ndarray],
        output_names: Optional[Sequence[str]] = None,
    ) -> Dict[str, np.ndarray]:
        """Execute one forward pass.

        Args:
            native: Session returned by load()
            feeds: Input arrays by input name
            output_names: Outputs to fetch, None fetches every output

        Returns:
            Output arrays by output name

        Raises:
            Exception: Any engine-specific error, mapped to EngineFailure by the caller
        """
        pass

    def close(self, native: Any) -> None:
        """Release a native session. Default does nothing."""
        pass
