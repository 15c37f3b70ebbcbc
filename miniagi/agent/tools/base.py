"""Base class for agent tools."""

from abc import ABC, abstractmethod
from typing import Any


class Tool(ABC):
    """
    Abstract base class for agent tools.

    Tools are capabilities that the agent can use to interact with
    the environment, such as tracking tasks or reading files.
    """

    _TYPE_MAP = {
        "string": str,
        "integer": int,
        "number": (int, float),
        "boolean": bool,
        "array": list,
        "object": dict,
    }

    @property
    @abstractmethod
    def name(self) -> str:
        """Tool name used in function calls."""
        pass

    @property
    @abstractmethod
    def description(self) -> str:
        """Description of what the tool does."""
        pass

    @property
    @abstractmethod
    def parameters(self) -> dict[str, Any]:
        """JSON Schema for tool parameters."""
        pass

    @abstractmethod
    async def execute(self, **kwargs: Any) -> str:
        """
        Execute the tool with given parameters.

        Args:
            **kwargs: Tool-specific parameters.

        Returns:
            String result of the tool execution.
        """
        pass

    def validate_params(self, params: dict[str, Any]) -> list[str]:
        """Validate parameters against the schema. Returns a list of errors."""
        schema = self.parameters or {}
        errors = []
        for key in schema.get("required", []):
            if key not in params:
                errors.append(f"missing required {key}")
        for key, value in params.items():
            prop = schema.get("properties", {}).get(key)
            if prop is None:
                continue
            expected = self._TYPE_MAP.get(prop.get("type"))
            if expected and not isinstance(value, expected):
                errors.append(f"{key} should be {prop['type']}")
            elif "enum" in prop and value not in prop["enum"]:
                errors.append(f"{key} must be one of {prop['enum']}")
        return errors

    def to_schema(self) -> dict[str, Any]:
        """Convert tool to OpenAI function schema format."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }
