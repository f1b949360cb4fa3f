"""LLM subsystem -- providers, model resolution, reasoning and orchestration."""

from inkwell.llm.cancel import CancelToken
from inkwell.llm.errors import (
    ConfigurationError,
    ErrorCategory,
    GenerationBusyError,
    GenerationCancelled,
    GenerationError,
    GenerationTimeoutError,
    ModelNotFoundError,
    NoModelSelectedError,
    NoProviderConfiguredError,
    TransportError,
    ValidationError,
)
from inkwell.llm.orchestrator import RequestOrchestrator
from inkwell.llm.reasoning import ReasoningDecision, classify
from inkwell.llm.registry import ProviderRegistry, Resolution, parse_model_string
from inkwell.llm.request_log import AIRequestLogger, RequestLogger
from inkwell.llm.token_counter import TokenCounter
from inkwell.llm.types import (
    Completion,
    GenerationRequest,
    Message,
    ModelReference,
    StreamChunk,
)

__all__ = [
    "AIRequestLogger",
    "CancelToken",
    "Completion",
    "ConfigurationError",
    "ErrorCategory",
    "GenerationBusyError",
    "GenerationCancelled",
    "GenerationError",
    "GenerationRequest",
    "GenerationTimeoutError",
    "Message",
    "ModelNotFoundError",
    "ModelReference",
    "NoModelSelectedError",
    "NoProviderConfiguredError",
    "ProviderRegistry",
    "ReasoningDecision",
    "RequestLogger",
    "RequestOrchestrator",
    "Resolution",
    "StreamChunk",
    "TokenCounter",
    "TransportError",
    "ValidationError",
    "classify",
    "parse_model_string",
]
