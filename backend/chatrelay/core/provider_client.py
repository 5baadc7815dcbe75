"""
Client for the upstream completion/image provider (OpenAI-compatible REST API)
"""
import base64
import json
import time
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from chatrelay.core.config import Settings, get_settings
from chatrelay.core.errors import UpstreamError
from chatrelay.core.logging_config import LoggingConfig
from chatrelay.core.metrics import (upstream_errors_total,
                                    upstream_request_duration_seconds,
                                    upstream_requests_total)

logger = LoggingConfig.get_logger(__name__)


def _error_details(response: httpx.Response) -> Any:
    """Provider diagnostics: the JSON error body when there is one, raw text otherwise"""
    try:
        body = response.json()
    except (json.JSONDecodeError, ValueError):
        return {"status": response.status_code, "body": response.text[:2000]}
    if isinstance(body, dict) and "error" in body:
        return {"status": response.status_code, **body}
    return {"status": response.status_code, "body": body}


class ProviderClient:
    """
    Client for the provider's chat-completion and image-generation endpoints.

    One ``httpx.AsyncClient`` is created lazily and reused for every request.
    No retries are attempted: every failure is raised as ``UpstreamError``.
    """

    def __init__(self, settings: Optional[Settings] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._settings = settings
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def settings(self) -> Settings:
        """Lazy load settings"""
        if self._settings is None:
            self._settings = get_settings()
        return self._settings

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the shared HTTP client"""
        if self._client is None or self._client.is_closed:
            headers = {"Content-Type": "application/json"}
            if self.settings.provider_api_key:
                headers["Authorization"] = f"Bearer {self.settings.provider_api_key}"
            self._client = httpx.AsyncClient(
                base_url=self.settings.provider_base_url,
                headers=headers,
                timeout=self.settings.provider_timeout_seconds,
                transport=self._transport,
                limits=httpx.Limits(
                    max_keepalive_connections=10,
                    max_connections=50,
                )
            )
        return self._client

    def _chat_payload(
        self,
        messages: List[Dict[str, str]],
        stream: bool,
        max_tokens: Optional[int],
        temperature: Optional[float],
    ) -> Dict[str, Any]:
        return {
            "model": self.settings.chat_model,
            "messages": messages,
            "stream": stream,
            "max_tokens": max_tokens or self.settings.default_max_tokens,
            "temperature": self.settings.temperature if temperature is None else temperature,
        }

    def _record_failure(self, operation: str, model: str, error_type: str):
        upstream_requests_total.labels(operation=operation, model=model, status="error").inc()
        upstream_errors_total.labels(operation=operation, model=model, error_type=error_type).inc()

    async def _post_json(self, operation: str, model: str, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """POST a JSON payload and return the decoded JSON body, mapping failures to UpstreamError"""
        client = self._get_client()
        start_time = time.time()
        try:
            response = await client.post(path, json=payload)
        except httpx.TimeoutException as e:
            self._record_failure(operation, model, "timeout")
            raise UpstreamError("Provider request timed out", details=str(e), upstream_status=504) from e
        except httpx.HTTPError as e:
            self._record_failure(operation, model, type(e).__name__)
            raise UpstreamError("Could not reach provider", details=str(e), upstream_status=502) from e
        finally:
            upstream_request_duration_seconds.labels(operation=operation, model=model).observe(
                time.time() - start_time
            )

        if response.is_error:
            self._record_failure(operation, model, f"http_{response.status_code}")
            details = _error_details(response)
            logger.warning(
                "Provider returned an error",
                extra={"operation": operation, "upstream_status": response.status_code}
            )
            raise UpstreamError(
                f"Provider returned HTTP {response.status_code}",
                details=details,
                upstream_status=response.status_code,
            )

        try:
            data = response.json()
        except (json.JSONDecodeError, ValueError) as e:
            self._record_failure(operation, model, "malformed_body")
            raise UpstreamError("Provider returned a non-JSON body", details=response.text[:2000]) from e

        upstream_requests_total.labels(operation=operation, model=model, status="success").inc()
        return data

    async def complete(
        self,
        messages: List[Dict[str, str]],
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> str:
        """
        Run one blocking chat completion.

        Args:
            messages: Ordered context entries ({"role", "content"})
            max_tokens: Completion budget (settings default when None)
            temperature: Sampling temperature (settings default when None)

        Returns:
            The assistant reply text

        Raises:
            UpstreamError: non-success status, transport failure or malformed body
        """
        model = self.settings.chat_model
        payload = self._chat_payload(messages, False, max_tokens, temperature)
        data = await self._post_json("chat", model, "/chat/completions", payload)

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            self._record_failure("chat", model, "malformed_body")
            raise UpstreamError("Provider response has no completion", details=data) from e
        if content is None:
            raise UpstreamError("Provider response has no completion", details=data)
        return content

    async def complete_stream(
        self,
        messages: List[Dict[str, str]],
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> AsyncIterator[str]:
        """
        Run a streaming chat completion.

        Yields:
            Text fragments as the provider produces them

        Raises:
            UpstreamError: before the first fragment for a non-success status,
                at any point for a broken stream
        """
        model = self.settings.chat_model
        payload = self._chat_payload(messages, True, max_tokens, temperature)
        client = self._get_client()
        start_time = time.time()

        try:
            async with client.stream("POST", "/chat/completions", json=payload) as response:
                if response.is_error:
                    await response.aread()
                    self._record_failure("chat_stream", model, f"http_{response.status_code}")
                    raise UpstreamError(
                        f"Provider returned HTTP {response.status_code}",
                        details=_error_details(response),
                        upstream_status=response.status_code,
                    )

                async for line in response.aiter_lines():
                    line = line.strip()
                    if not line.startswith("data:"):
                        continue
                    data = line[len("data:"):].strip()
                    if data == "[DONE]":
                        break
                    try:
                        event = json.loads(data)
                    except json.JSONDecodeError:
                        logger.debug(f"Skipping undecodable stream line: {data[:200]}")
                        continue
                    choices = event.get("choices") or []
                    if not choices:
                        continue
                    content = (choices[0].get("delta") or {}).get("content")
                    if content:
                        yield content
        except httpx.TimeoutException as e:
            self._record_failure("chat_stream", model, "timeout")
            raise UpstreamError("Provider stream timed out", details=str(e), upstream_status=504) from e
        except httpx.HTTPError as e:
            self._record_failure("chat_stream", model, type(e).__name__)
            raise UpstreamError("Provider stream failed", details=str(e), upstream_status=502) from e
        finally:
            upstream_request_duration_seconds.labels(operation="chat_stream", model=model).observe(
                time.time() - start_time
            )

        upstream_requests_total.labels(operation="chat_stream", model=model, status="success").inc()

    async def generate_images(self, prompt: str, size: str, n: int = 1) -> List[str]:
        """
        Generate images and return their base64 payloads.

        Items returned as URLs are downloaded and encoded so callers always
        get base64 data.
        """
        model = self.settings.image_model
        payload: Dict[str, Any] = {
            "model": model,
            "prompt": prompt,
            "size": size,
            "n": n,
        }
        if model.startswith("dall-e"):
            payload["response_format"] = "b64_json"

        data = await self._post_json("image", model, "/images/generations", payload)
        items = data.get("data") if isinstance(data, dict) else None
        if not items:
            raise UpstreamError("Provider returned no images", details=data)

        images = []
        for item in items:
            if item.get("b64_json"):
                images.append(item["b64_json"])
            elif item.get("url"):
                images.append(await self._download_as_base64(item["url"]))
            else:
                raise UpstreamError("Provider image item has neither b64_json nor url", details=item)
        return images

    async def _download_as_base64(self, url: str) -> str:
        # Image URLs point at a CDN, so the provider key must not be attached
        try:
            async with httpx.AsyncClient(
                timeout=self.settings.provider_timeout_seconds,
                transport=self._transport,
            ) as download_client:
                response = await download_client.get(url)
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise UpstreamError(
                "Could not download generated image",
                details={"status": e.response.status_code, "url": url},
                upstream_status=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise UpstreamError("Could not download generated image", details=str(e), upstream_status=502) from e
        return base64.b64encode(response.content).decode("ascii")

    async def close(self):
        """Close the HTTP client"""
        if self._client is not None:
            await self._client.aclose()
            self._client = None


# Global client instance
_provider_client: Optional[ProviderClient] = None


def get_provider_client() -> ProviderClient:
    """Get global provider client instance"""
    global _provider_client
    if _provider_client is None:
        _provider_client = ProviderClient()
    return _provider_client
