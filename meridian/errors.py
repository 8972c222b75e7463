# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Meridian Error Hierarchy

Provides the error types raised by the graph runtime with:
- Clear error categorization
- Helpful error messages with suggestions
- Context information for debugging

Error Categories:
- MeridianError: Base class for all Meridian errors
- InputValidationError: Missing/extra input placeholders, unknown outputs
- UnsupportedOperationError: Operator kind without a registered kernel
- KernelError: Reference kernel failure (missing input, bad parameter)
- UnsupportedFeatureError: Parameter value outside the accelerated path
- AcceleratedCompilationError: Accelerated model cannot be assembled
- BackendExecutionError: Accelerated backend reported a run failure
- ControlFlowError: Illegal frame transition during execution
- OutputNotFoundError: Requested output was never produced
- ConfigurationError: Configuration/setup errors
- TensorDisposedError: Access to a released tensor

Errors raised by operator kernels are never wrapped; they reach the
caller unchanged.
"""

from typing import Any, Optional


class MeridianError(Exception):
    """
    Base class for all Meridian errors.

    Provides consistent error formatting and context tracking.

    Attributes:
        message: Human-readable error message
        suggestions: List of suggestions to fix the error
        context: Optional context dictionary for debugging
    """

    def __init__(
        self,
        message: str,
        suggestions: Optional[list[str]] = None,
        context: Optional[dict] = None,
    ):
        self.message = message
        self.suggestions = suggestions or []
        self.context = context or {}

        full_message = self._format_message()
        super().__init__(full_message)

    def _format_message(self) -> str:
        """Format the error message with suggestions."""
        lines = [self.message]

        if self.suggestions:
            lines.append("")
            lines.append("Suggestions:")
            for i, suggestion in enumerate(self.suggestions, 1):
                lines.append(f"  {i}. {suggestion}")

        if self.context:
            lines.append("")
            lines.append("Context:")
            for key, value in self.context.items():
                lines.append(f"  {key}: {value}")

        return "\n".join(lines)


class InputValidationError(MeridianError):
    """
    Input contract violation.

    Raised before any node executes when:
    - Declared placeholders are absent from the supplied inputs
    - Supplied inputs name no declared placeholder
    - Requested outputs name no node of the graph
    """

    def __init__(
        self,
        missing: Optional[list[str]] = None,
        extra: Optional[list[str]] = None,
        unknown: Optional[list[str]] = None,
    ):
        self.missing = list(missing or [])
        self.extra = list(extra or [])
        self.unknown = list(unknown or [])

        parts = []
        if self.missing:
            parts.append(f"Missing input placeholders: {', '.join(self.missing)}")
        if self.extra:
            parts.append(f"Extra input tensors: {', '.join(self.extra)}")
        if self.unknown:
            parts.append(f"Unknown output nodes: {', '.join(self.unknown)}")

        context = {}
        if self.missing:
            context["missing"] = self.missing
        if self.extra:
            context["extra"] = self.extra
        if self.unknown:
            context["unknown"] = self.unknown

        super().__init__(
            message="; ".join(parts) or "Invalid inputs",
            suggestions=["Check GraphExecutor.input_nodes for the expected names"],
            context=context,
        )


class UnsupportedOperationError(MeridianError):
    """
    Operator kind with no registered kernel.

    Raised by operator dispatch when a node's op has no implementation.
    """

    def __init__(
        self,
        op: str,
        supported_ops: Optional[list[str]] = None,
    ):
        self.op = op
        self.supported_ops = supported_ops or []

        suggestions = [
            f"Register a kernel with @OperatorRegistry.register('{op}')",
        ]

        if supported_ops:
            similar = self._find_similar_ops(op, supported_ops)
            if similar:
                suggestions.insert(0, f"Try using: {', '.join(similar)}")

        super().__init__(
            message=f"Operation '{op}' is not supported",
            suggestions=suggestions,
            context={"operation": op},
        )

    @staticmethod
    def _find_similar_ops(op: str, supported_ops: list[str]) -> list[str]:
        """Find similar supported operations."""
        op_lower = op.lower()
        similar = []
        for candidate in supported_ops:
            if op_lower in candidate.lower() or candidate.lower() in op_lower:
                similar.append(candidate)
        return similar[:3]


class KernelError(MeridianError):
    """
    Error raised by a reference kernel.

    Raised when:
    - A required input has no value
    - Invalid kernel parameters
    """

    def __init__(
        self,
        message: str,
        node_name: Optional[str] = None,
        op: Optional[str] = None,
        input_shapes: Optional[list] = None,
    ):
        context = {}
        if node_name:
            context["node_name"] = node_name
        if op:
            context["operation"] = op
        if input_shapes:
            context["input_shapes"] = str(input_shapes)

        super().__init__(
            message=f"Kernel execution failed: {message}",
            context=context,
        )


class UnsupportedFeatureError(MeridianError):
    """
    Operator parameter not supported by the accelerated path.

    Raised during accelerated compilation for padding modes, data
    layouts, dilations or bias shapes outside the supported set.
    """

    def __init__(
        self,
        parameter: str,
        value: Any,
        node_name: Optional[str] = None,
        supported: Optional[list[str]] = None,
    ):
        self.parameter = parameter
        self.value = value
        self.node_name = node_name

        context = {"parameter": parameter, "value": value}
        if node_name:
            context["node_name"] = node_name

        suggestions = ["Run this graph with ExecutorConfig(backend='interpreter')"]
        if supported:
            suggestions.insert(0, f"Supported values: {', '.join(supported)}")

        super().__init__(
            message=f"{parameter} {value} is not supported",
            suggestions=suggestions,
            context=context,
        )


class AcceleratedCompilationError(MeridianError):
    """
    Error while assembling the accelerated model.

    Raised when:
    - A supported operator consumes the output of a skipped one
    - The graph does not have exactly one input and one output
    """

    def __init__(
        self,
        message: str,
        node_name: Optional[str] = None,
        suggestions: Optional[list[str]] = None,
    ):
        context = {}
        if node_name:
            context["node_name"] = node_name

        default_suggestions = [
            "Check that all operations on the path are supported",
            "Run this graph with ExecutorConfig(backend='interpreter')",
        ]

        super().__init__(
            message=f"Accelerated compilation failed: {message}",
            suggestions=suggestions or default_suggestions,
            context=context,
        )


class BackendExecutionError(MeridianError):
    """Accelerated backend returned an error from its run step."""

    def __init__(self, error: Any, backend: Optional[str] = None):
        self.error = error

        context = {}
        if backend:
            context["backend"] = backend

        super().__init__(
            message=f"Accelerated execution failed: {error}",
            context=context,
        )


class ControlFlowError(MeridianError):
    """
    Illegal control-flow state.

    Raised when:
    - A frame is exited or advanced while the context is at the root
    - A kernel returns an awaitable during synchronous execution
    """

    def __init__(self, message: str, node_name: Optional[str] = None):
        context = {}
        if node_name:
            context["node_name"] = node_name

        super().__init__(message=message, context=context)


class OutputNotFoundError(MeridianError):
    """Requested outputs that produced no tensor in this execution."""

    def __init__(self, names: list[str]):
        self.names = list(names)

        super().__init__(
            message=f"No tensor produced for outputs: {', '.join(self.names)}",
            suggestions=[
                "Outputs on an untaken branch have no value",
                "Outputs are resolved in the root frame",
            ],
        )


class ConfigurationError(MeridianError):
    """
    Configuration or setup error.

    Raised when:
    - Invalid configuration parameters
    - Accelerated backend forced but unavailable
    """

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        config_value: Optional[str] = None,
    ):
        context = {}
        if config_key:
            context["config_key"] = config_key
        if config_value:
            context["config_value"] = str(config_value)

        suggestions = [
            "Check configuration parameters",
            "Review the MERIDIAN_* environment variables",
        ]

        super().__init__(
            message=f"Configuration error: {message}",
            suggestions=suggestions,
            context=context,
        )


class TensorDisposedError(MeridianError):
    """Data access on a tensor whose storage has been released."""

    def __init__(self, tensor_id: int):
        self.tensor_id = tensor_id
        super().__init__(message=f"Tensor {tensor_id} has been disposed")
