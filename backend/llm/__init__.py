"""Language-model boundary for workflow decomposition.

The model call is an external collaborator: it returns raw, possibly
malformed text. Everything downstream of ``extract_json_from_response``
treats the result as untrusted.
"""

from llm.client import (
    LLMClient,
    LLMResponse,
    MockLLMClient,
    extract_json_from_response,
    get_llm_client,
)
from llm.prompts import DECOMPOSE_SYSTEM_PROMPT, PROMPT_VERSION, build_decompose_prompt

__all__ = [
    "DECOMPOSE_SYSTEM_PROMPT",
    "LLMClient",
    "LLMResponse",
    "MockLLMClient",
    "PROMPT_VERSION",
    "build_decompose_prompt",
    "extract_json_from_response",
    "get_llm_client",
]
