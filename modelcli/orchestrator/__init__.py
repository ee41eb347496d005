from modelcli.orchestrator.core import DEFAULT_MAX_TOOL_PASSES, ModelClient

__all__ = ["DEFAULT_MAX_TOOL_PASSES", "ModelClient"]
