"""
Vision Model Client
Single entry point for all model calls in the compliance pipeline.
Primary: Gemini 2.5 Flash (vision-capable, JSON output)
Fallback: Gemini 1.5 Flash
"""
import os
import re
import json
import base64
import logging
from typing import Optional
import litellm

logger = logging.getLogger("compliance-llm")

VISION_MODEL = os.getenv("VISION_MODEL", "gemini/gemini-2.5-flash")
FALLBACK_MODEL = os.getenv("VISION_FALLBACK_MODEL", "gemini/gemini-1.5-flash")
DEFAULT_TEMPERATURE = float(os.getenv("LLM_TEMPERATURE", "0.2"))

# Suppress litellm verbose logging
litellm.set_verbose = False

_FENCED_BLOCK = re.compile(r"```(?:json)?\s*([\s\S]*?)```")
_JSON_BODY = re.compile(r"[\[{][\s\S]*[\]}]")


class LLMResponseError(ValueError):
    """Model output could not be parsed as JSON."""


def parse_json_from_response(text: Optional[str]):
    """
    Extract the JSON payload from a model response.
    Handles ```json fenced blocks and leading/trailing prose.
    """
    if not text:
        raise LLMResponseError("Empty model response")

    cleaned = text.strip()
    fenced = _FENCED_BLOCK.search(cleaned)
    if fenced:
        cleaned = fenced.group(1).strip()

    body = _JSON_BODY.search(cleaned)
    if body:
        cleaned = body.group(0)

    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise LLMResponseError(
            f"Failed to parse JSON from model response: {text[:200]}..."
        ) from e


def _build_messages(prompt: str, image: Optional[bytes], mime_type: str) -> list:
    if image is None:
        return [{"role": "user", "content": prompt}]
    img_b64 = base64.b64encode(image).decode()
    return [{
        "role": "user",
        "content": [
            {"type": "text", "text": prompt},
            {"type": "image_url", "image_url": {"url": f"data:{mime_type};base64,{img_b64}"}},
        ],
    }]


async def generate(
    prompt: str,
    image: Optional[bytes] = None,
    *,
    mime_type: str = "image/png",
    model: Optional[str] = None,
    fallback_model: Optional[str] = None,
    temperature: float = DEFAULT_TEMPERATURE,
    json_mode: bool = True,
    max_tokens: int = 4096,
) -> str:
    """
    Call the primary vision model; fall back once on rate limit or error.
    Returns the response content string.
    """
    messages = _build_messages(prompt, image, mime_type)
    kwargs = {
        "messages": messages,
        "temperature": temperature,
        "max_tokens": max_tokens,
    }
    if json_mode:
        kwargs["response_format"] = {"type": "json_object"}

    primary = model or VISION_MODEL
    fallback = fallback_model or FALLBACK_MODEL

    try:
        response = await litellm.acompletion(model=primary, **kwargs)
        return response.choices[0].message.content or ""
    except litellm.RateLimitError:
        logger.warning(f"{primary} rate limit hit, falling back to {fallback}")
    except litellm.AuthenticationError:
        logger.warning(f"{primary} auth error, falling back to {fallback}")
    except Exception as e:
        logger.warning(f"{primary} error ({type(e).__name__}: {e}), falling back to {fallback}")

    if fallback == primary:
        raise RuntimeError(f"Vision model {primary} failed and no distinct fallback is configured")

    try:
        response = await litellm.acompletion(model=fallback, **kwargs)
        return response.choices[0].message.content or ""
    except Exception as e:
        logger.error(f"Both vision models failed. Fallback error: {e}")
        raise RuntimeError(f"All vision model providers failed. Last error: {e}") from e


class VisionModelClient:
    """
    Class-based wrapper around the module-level generate() function.
    Stages receive an instance so tests can substitute a scripted client.
    """

    def __init__(
        self,
        model: Optional[str] = None,
        fallback_model: Optional[str] = None,
        temperature: float = DEFAULT_TEMPERATURE,
    ):
        self.model = model or VISION_MODEL
        self.fallback_model = fallback_model or FALLBACK_MODEL
        self.temperature = temperature

    async def generate(self, prompt: str, image: Optional[bytes] = None) -> str:
        return await generate(
            prompt,
            image,
            model=self.model,
            fallback_model=self.fallback_model,
            temperature=self.temperature,
        )
