from .llm import LLMAgent, build_default_registry

__all__ = ["LLMAgent", "build_default_registry"]
