"""
LLM access for the grounding agent
Prompt execution through LangChain chat models (Gemini or Groq)
"""

import os
import re
import logging
from typing import Any, Dict, Optional, Protocol

from langchain_core.language_models import BaseLanguageModel
from langchain_core.output_parsers import StrOutputParser
from langchain_core.prompts import PromptTemplate

logger = logging.getLogger(__name__)

_CODE_FENCE = re.compile(r"```(?:json)?\s*(.*?)\s*```", re.DOTALL)


class PromptExecutor(Protocol):
    """Renders a prompt template with variables and returns the raw LLM text"""

    async def invoke(self, prompt_template: str, variables: Dict[str, Any]) -> str:
        ...


def get_llm_instance(provider: str = "gemini", temperature: float = 0.0):
    """
    Get LLM instance based on provider.

    Args:
        provider: "gemini" or "groq"
        temperature: Temperature setting (0.0 for deterministic)

    Returns:
        LLM instance
    """
    if provider == "gemini":
        from langchain_google_genai import ChatGoogleGenerativeAI

        api_key = os.getenv("GEMINI_API_KEY")
        if not api_key:
            raise ValueError("GEMINI_API_KEY not found in environment")

        model_name = os.getenv("GEMINI_MODEL_NAME", "gemini-2.5-flash")
        logger.info(f"Using Gemini model: {model_name}")

        return ChatGoogleGenerativeAI(
            model=model_name,
            google_api_key=api_key,
            temperature=temperature
        )

    elif provider == "groq":
        from langchain_groq import ChatGroq

        api_key = os.getenv("GROQ_API_KEY")
        if not api_key:
            raise ValueError("GROQ_API_KEY not found in environment")

        model_name = os.getenv("AGENT_MODEL_NAME", "llama-3.3-70b-versatile")
        logger.info(f"Using Groq model: {model_name}")

        return ChatGroq(
            model=model_name,
            groq_api_key=api_key,
            temperature=temperature
        )

    else:
        raise ValueError(f"Unknown provider: {provider}. Must be 'gemini' or 'groq'")


class LangChainPromptExecutor:
    """PromptExecutor backed by a LangChain chat model"""

    def __init__(self, llm: Optional[BaseLanguageModel] = None, provider: str = "gemini"):
        self.llm = llm or get_llm_instance(provider)

    async def invoke(self, prompt_template: str, variables: Dict[str, Any]) -> str:
        chain = PromptTemplate.from_template(prompt_template) | self.llm | StrOutputParser()
        return await chain.ainvoke(variables)


def extract_json_text(response_text: str) -> str:
    """
    Strip markdown code fences and surrounding prose from an LLM response.

    Returns the text of the first JSON array or object found, or the
    stripped response when nothing JSON-like is present.
    """
    text = (response_text or "").strip()

    # Remove markdown code blocks if present
    fence = _CODE_FENCE.search(text)
    if fence:
        text = fence.group(1).strip()

    if text.startswith("[") or text.startswith("{"):
        return text

    starts = [pos for pos in (text.find("["), text.find("{")) if pos != -1]
    if not starts:
        return text
    start = min(starts)
    end = max(text.rfind("]"), text.rfind("}"))
    if end <= start:
        return text
    return text[start:end + 1]
