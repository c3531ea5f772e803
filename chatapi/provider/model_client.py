"""
Model invocation adapter.

Sends an ordered message list to a deployment's endpoint and returns the
assistant text. Two wire styles are supported:

- Azure OpenAI: ``{endpoint}/openai/deployments/{deployment_name}/chat/completions``
  with an ``api-key`` header and ``api-version`` query parameter.
- OpenAI compatible: ``{endpoint}/v1/chat/completions`` with
  ``Authorization: Bearer`` and ``model=deployment_name``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Sequence
from urllib.parse import urlparse

import httpx

from chatapi.logging_config import logger
from chatapi.models import ModelDeployment
from chatapi.services.encryption import decrypt_secret
from chatapi.settings import settings

_AZURE_HOST_SUFFIXES = (".openai.azure.com", ".cognitiveservices.azure.com")


class ModelInvocationError(RuntimeError):
    """Raised when the upstream model call fails or returns an unusable payload."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class GenerationParams:
    max_tokens: int
    temperature: float
    top_p: float

    @classmethod
    def from_settings(cls) -> "GenerationParams":
        return cls(
            max_tokens=settings.model_max_tokens,
            temperature=settings.model_temperature,
            top_p=settings.model_top_p,
        )


@dataclass(frozen=True)
class ChatRequest:
    url: str
    headers: dict[str, str]
    params: dict[str, str]
    body: dict[str, Any]


def is_azure_endpoint(endpoint: str) -> bool:
    host = (urlparse(endpoint).hostname or "").lower()
    return host.endswith(_AZURE_HOST_SUFFIXES)


def build_chat_request(
    deployment: ModelDeployment,
    api_key: str,
    messages: Sequence[dict[str, str]],
    params: GenerationParams,
) -> ChatRequest:
    base = deployment.endpoint.rstrip("/")
    body: dict[str, Any] = {
        "messages": [{"role": m["role"], "content": m["content"]} for m in messages],
        "max_tokens": params.max_tokens,
        "temperature": params.temperature,
        "top_p": params.top_p,
        "stream": False,
    }
    headers = {"Content-Type": "application/json", "Accept": "application/json"}

    if is_azure_endpoint(base):
        headers["api-key"] = api_key
        return ChatRequest(
            url=f"{base}/openai/deployments/{deployment.deployment_name}/chat/completions",
            headers=headers,
            params={"api-version": settings.azure_openai_api_version},
            body=body,
        )

    headers["Authorization"] = f"Bearer {api_key}"
    body["model"] = deployment.deployment_name
    # 兼容用户直接填写带 /v1 的 base URL
    path = "/chat/completions" if base.endswith("/v1") else "/v1/chat/completions"
    return ChatRequest(url=f"{base}{path}", headers=headers, params={}, body=body)


def extract_reply_text(payload: Any) -> str:
    """取出第一个 choice 的文本；缺失时返回空串，由调用方决定兜底内容。"""
    if not isinstance(payload, dict):
        raise ModelInvocationError("Upstream response is not a JSON object")
    choices = payload.get("choices") or []
    if not choices or not isinstance(choices[0], dict):
        return ""
    message = choices[0].get("message") or {}
    content = message.get("content") if isinstance(message, dict) else None
    return content if isinstance(content, str) else ""


async def invoke(
    client: httpx.AsyncClient,
    deployment: ModelDeployment,
    messages: Sequence[dict[str, str]],
    params: GenerationParams,
    *,
    api_key: str | None = None,
    timeout: float | None = None,
) -> str:
    """Call the deployment with ``messages`` and return the assistant text (may be empty)."""
    if api_key is None:
        api_key = decrypt_secret(deployment.encrypted_api_key)
    request = build_chat_request(deployment, api_key, messages, params)
    effective_timeout = timeout if timeout is not None else settings.model_request_timeout_seconds

    logger.debug(
        "Invoking deployment %s (%s) with %d messages",
        deployment.id,
        deployment.deployment_name,
        len(messages),
    )
    try:
        response = await client.post(
            request.url,
            params=request.params or None,
            headers=request.headers,
            json=request.body,
            timeout=effective_timeout,
        )
    except httpx.TimeoutException as exc:
        raise ModelInvocationError(
            f"Model call timed out after {effective_timeout:.0f}s"
        ) from exc
    except httpx.HTTPError as exc:
        raise ModelInvocationError(f"Model call failed: {exc}") from exc

    if response.status_code >= 400:
        snippet = response.text[:200]
        raise ModelInvocationError(
            f"Upstream returned HTTP {response.status_code}: {snippet}",
            status_code=response.status_code,
        )

    try:
        payload = response.json()
    except ValueError as exc:
        raise ModelInvocationError("Upstream response is not valid JSON") from exc
    return extract_reply_text(payload)


__all__ = [
    "ChatRequest",
    "GenerationParams",
    "ModelInvocationError",
    "build_chat_request",
    "extract_reply_text",
    "invoke",
    "is_azure_endpoint",
]
