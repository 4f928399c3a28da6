from __future__ import annotations

import json
from typing import Any, Dict, Optional

import httpx

from hvacflow.logging import get_logger
from hvacflow.service.errors import DownstreamError

logger = get_logger(__name__)


class AIService:
    """Client for the remote AI analysis endpoint.

    The endpoint is opaque: it receives ``{prompt, inputData}`` and whatever
    JSON it returns becomes the node's ``result``. Without an endpoint the
    service answers with a deterministic local summary so workflows remain
    runnable in development.
    """

    def __init__(
        self,
        *,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def is_configured(self) -> bool:
        return bool(self.base_url)

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout, connect=10.0),
                headers=headers,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def analyze(self, prompt: str, input_data: Any) -> Dict[str, Any]:
        if not self.is_configured:
            logger.info("ai_analysis_local", prompt_length=len(prompt))
            return self._local_summary(prompt, input_data)

        try:
            client = await self._get_client()
            response = await client.post(
                self.base_url, json={"prompt": prompt, "inputData": input_data}
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(
                "ai_analysis_api_error",
                status_code=e.response.status_code,
                error=str(e),
            )
            raise DownstreamError(f"AI analysis failed: {e.response.status_code}") from e
        except httpx.TimeoutException as e:
            logger.error("ai_analysis_timeout", timeout=self.timeout, error=str(e))
            raise DownstreamError("AI analysis timed out") from e
        except httpx.HTTPError as e:
            logger.error("ai_analysis_transport_error", error_type=type(e).__name__, error=str(e))
            raise DownstreamError("failed to reach AI analysis service") from e
        except ValueError as e:
            logger.error("ai_analysis_bad_response", error=str(e))
            raise DownstreamError("AI analysis service returned invalid JSON") from e

        logger.info("ai_analysis_success", prompt_length=len(prompt))
        if isinstance(data, dict) and "result" in data:
            return {"result": data["result"]}
        return {"result": data}

    def _local_summary(self, prompt: str, input_data: Any) -> Dict[str, Any]:
        if isinstance(input_data, dict):
            fields = sorted(input_data)
        elif isinstance(input_data, list):
            fields = [f"item_{i}" for i in range(len(input_data))]
        else:
            fields = []
        serialized = json.dumps(input_data, sort_keys=True, default=str)
        return {
            "result": {
                "summary": f"Analyzed {len(fields)} fields for: {prompt}".strip(),
                "fields": fields,
                "input_size": len(serialized),
            }
        }
