"""
Natural-language filter grounding for tabular memory.
"""

from .filter_agent import TabularFilterAgent
from .llm import LangChainPromptExecutor, PromptExecutor, get_llm_instance

__all__ = ["TabularFilterAgent", "LangChainPromptExecutor", "PromptExecutor", "get_llm_instance"]
