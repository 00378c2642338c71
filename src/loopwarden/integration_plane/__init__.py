"""Integration plane: collaborators that reach outside the process."""

from loopwarden.integration_plane.agent_runner import AgentRunner, ExecResult, SubprocessAgentRunner

__all__ = ["AgentRunner", "ExecResult", "SubprocessAgentRunner"]
