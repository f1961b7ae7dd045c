from .invoker import AgentInvoker, PydanticAIInvoker, as_invoker

__all__ = ["AgentInvoker", "PydanticAIInvoker", "as_invoker"]
