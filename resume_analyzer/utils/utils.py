import json

import requests

from resume_analyzer.models.settings import LLMSettings, get_settings
from resume_analyzer.utils.exceptions import ExternalServiceError
from resume_analyzer.utils.logging_config import get_logger

logger = get_logger(__name__)


def ollama_generate(
    prompt: str,
    model: str = None,
    temperature: float = None,
    system: str = None,
    fmt: str = None,
    settings: LLMSettings = None,
    timeout: float = None,
) -> str:
    settings = settings or get_settings().llm
    url = f"{settings.base_url.rstrip('/')}/api/generate"
    payload = {
        "model": model or settings.model_name,
        "prompt": prompt,
        "options": {"temperature": settings.temperature if temperature is None else temperature},
        "stream": False,  # important
    }
    if system:
        payload["system"] = system
    if fmt:
        payload["format"] = fmt

    try:
        resp = requests.post(url, json=payload, timeout=timeout or settings.timeout)
        resp.raise_for_status()
    except requests.HTTPError as e:
        status = e.response.status_code if e.response is not None else None
        raise ExternalServiceError(f"Ollama returned an error: {e}", service_name="ollama", status_code=status, cause=e) from e
    except requests.RequestException as e:
        raise ExternalServiceError(f"Ollama request failed: {e}", service_name="ollama", cause=e) from e

    logger.debug(f"Ollama generate ok ({payload['model']}, {len(prompt)} prompt chars)")
    return resp.json().get("response", "") or ""


def safe_json(s: str, fallback: dict):
    try:
        # heuristics to find JSON inside
        start = s.find("{")
        end = s.rfind("}")
        if start >= 0 and end >= 0:
            return json.loads(s[start:end + 1])
        return fallback
    except (ValueError, TypeError, AttributeError):
        return fallback
