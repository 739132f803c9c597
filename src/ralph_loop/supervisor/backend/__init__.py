"""Agent invocation backends."""

from ralph_loop.supervisor.backend.base import AgentInvoker, AgentRunRequest, AgentRunResult
from ralph_loop.supervisor.backend.cli_backend import BackendRunError, CliAgentBackend

__all__ = [
    "AgentInvoker",
    "AgentRunRequest",
    "AgentRunResult",
    "BackendRunError",
    "CliAgentBackend",
]
