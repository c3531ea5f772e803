"""
Deployment connection probe.

Sends a tiny chat completion (max_tokens=1) to the deployment and reports
success and latency. Failures are returned, never raised.
"""

from __future__ import annotations

import time

import httpx

from chatapi.logging_config import logger
from chatapi.models import ModelDeployment
from chatapi.provider.model_client import GenerationParams, build_chat_request
from chatapi.schemas import DeploymentTestResponse
from chatapi.settings import settings

_PROBE_PARAMS = GenerationParams(max_tokens=1, temperature=0.0, top_p=1.0)


async def probe_deployment(
    client: httpx.AsyncClient,
    deployment: ModelDeployment,
    *,
    api_key: str,
) -> DeploymentTestResponse:
    messages = [{"role": "user", "content": settings.probe_prompt}]

    start = time.perf_counter()
    try:
        request = build_chat_request(deployment, api_key, messages, _PROBE_PARAMS)
        resp = await client.post(
            request.url,
            params=request.params or None,
            headers=request.headers,
            json=request.body,
            timeout=settings.probe_timeout_seconds,
        )
    except Exception as exc:  # 网络/超时/非法 URL 都归为探测失败
        logger.warning("Connection probe for deployment %s failed: %s", deployment.id, exc)
        return DeploymentTestResponse(
            success=False,
            message=f"Connection failed: {exc or type(exc).__name__}",
            response_time_ms=None,
        )

    duration_ms = round((time.perf_counter() - start) * 1000.0, 2)
    if resp.status_code >= 400:
        return DeploymentTestResponse(
            success=False,
            message=f"HTTP {resp.status_code}: {resp.text[:200]}",
            response_time_ms=duration_ms,
        )
    return DeploymentTestResponse(
        success=True,
        message="Connection successful",
        response_time_ms=duration_ms,
    )


__all__ = ["probe_deployment"]
