from dataclasses import dataclass
from typing import Any, Dict, Protocol

from ..llm.base import ToolSpec


@dataclass(frozen=True)
class ToolResult:
    data: Dict[str, Any]
    is_error: bool = False
    duration_ms: float = 0.0


class Tool(Protocol):
    name: str
    spec: ToolSpec

    def run(self, arguments: Dict[str, Any]) -> ToolResult:
        """Execute the tool with arguments supplied by the model.

        Args:
            arguments: Decoded JSON arguments from the provider's tool request

        Returns:
            ToolResult with the numeric result record, or an `{"error": ...}`
            payload the model can read and correct
        """
        ...
