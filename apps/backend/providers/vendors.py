"""
Vendor-specific request/response mapping.

Each vendor is a pair of small functions: build the HTTP request for a
(system, user) prompt, and pull the generated text out of the JSON response.
Everything else (HTTP, errors, retries) is shared.
"""
import logging
from typing import Any, Callable, Dict, NamedTuple, Optional

logger = logging.getLogger(__name__)

OPENAI_BASE_URL = "https://api.openai.com/v1"
OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
ANTHROPIC_BASE_URL = "https://api.anthropic.com/v1"
ANTHROPIC_VERSION = "2023-06-01"
GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"


class HttpRequest(NamedTuple):
    url: str
    headers: Dict[str, str]
    payload: Dict[str, Any]


class Vendor(NamedTuple):
    name: str
    build_request: Callable[..., HttpRequest]
    parse_response: Callable[[Dict[str, Any]], str]


def _chat_payload(model: str, system: str, user: str, temperature: float, max_tokens: int) -> Dict[str, Any]:
    return {
        "model": model,
        "messages": [
            {"role": "system", "content": system},
            {"role": "user", "content": user},
        ],
        "temperature": temperature,
        "max_tokens": max_tokens,
    }


def openai_request(api_key: str, model: str, system: str, user: str,
                   temperature: float = 0.1, max_tokens: int = 4000) -> HttpRequest:
    return HttpRequest(
        f"{OPENAI_BASE_URL}/chat/completions",
        {"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"},
        _chat_payload(model, system, user, temperature, max_tokens),
    )


def openrouter_request(api_key: str, model: str, system: str, user: str,
                       temperature: float = 0.1, max_tokens: int = 4000) -> HttpRequest:
    return HttpRequest(
        f"{OPENROUTER_BASE_URL}/chat/completions",
        {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
            "X-Title": "jobextract",
        },
        _chat_payload(model, system, user, temperature, max_tokens),
    )


def chat_completion_text(data: Dict[str, Any]) -> str:
    choices = data.get("choices") or []
    if not choices:
        logger.warning(f"[vendors] Chat response without choices: {str(data)[:200]}")
        return ""
    message = choices[0].get("message") or {}
    if choices[0].get("finish_reason") == "length":
        logger.warning("[vendors] Chat response truncated by max_tokens")
    return message.get("content") or ""


def anthropic_request(api_key: str, model: str, system: str, user: str,
                      temperature: float = 0.1, max_tokens: int = 4000) -> HttpRequest:
    return HttpRequest(
        f"{ANTHROPIC_BASE_URL}/messages",
        {
            "x-api-key": api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "Content-Type": "application/json",
        },
        {
            "model": model,
            "system": system,
            "messages": [{"role": "user", "content": user}],
            "temperature": temperature,
            "max_tokens": max_tokens,
        },
    )


def anthropic_text(data: Dict[str, Any]) -> str:
    if data.get("stop_reason") == "max_tokens":
        logger.warning("[vendors] Anthropic response truncated by max_tokens")
    blocks = data.get("content") or []
    return "".join(b.get("text", "") for b in blocks if b.get("type") == "text")


def gemini_request(api_key: str, model: str, system: str, user: str,
                   temperature: float = 0.1, max_tokens: int = 4000) -> HttpRequest:
    return HttpRequest(
        f"{GEMINI_BASE_URL}/models/{model}:generateContent",
        {"x-goog-api-key": api_key, "Content-Type": "application/json"},
        {
            "systemInstruction": {"parts": [{"text": system}]},
            "contents": [{"role": "user", "parts": [{"text": user}]}],
            "generationConfig": {"temperature": temperature, "maxOutputTokens": max_tokens},
        },
    )


def gemini_text(data: Dict[str, Any]) -> str:
    candidates = data.get("candidates") or []
    if not candidates:
        feedback = data.get("promptFeedback") or {}
        logger.warning(f"[vendors] Gemini returned no candidates (blockReason={feedback.get('blockReason')})")
        return ""
    candidate = candidates[0]
    if candidate.get("finishReason") == "MAX_TOKENS":
        logger.warning("[vendors] Gemini response truncated by maxOutputTokens")
    parts = (candidate.get("content") or {}).get("parts") or []
    return "".join(p.get("text", "") for p in parts)


VENDORS: Dict[str, Vendor] = {
    "openai": Vendor("openai", openai_request, chat_completion_text),
    "openrouter": Vendor("openrouter", openrouter_request, chat_completion_text),
    "anthropic": Vendor("anthropic", anthropic_request, anthropic_text),
    "gemini": Vendor("gemini", gemini_request, gemini_text),
}


def get_vendor(name: str) -> Optional[Vendor]:
    return VENDORS.get(name)
