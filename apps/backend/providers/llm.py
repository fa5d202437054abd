"""
HTTP chat-completion provider shared by all vendors.
"""
import logging
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Optional

import httpx

from core.errors import ProviderError, ProviderUnavailable, TransientProviderError
from providers.base import Capability, ExtractionProvider, ExtractionRequest
from providers.prompts import build_prompt
from providers.vendors import HttpRequest, Vendor

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


def parse_retry_after_header(value: Optional[str]) -> Optional[float]:
    """Retry-After header as seconds (delta-seconds or HTTP date)."""
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())


class ChatCompletionProvider(ExtractionProvider):
    """One provider implementation parameterized by a Vendor mapping."""

    def __init__(
        self,
        vendor: Vendor,
        api_key: Optional[str],
        model: str,
        priority: int = 50,
        timeout: float = DEFAULT_TIMEOUT,
        temperature: float = 0.1,
        detail_temperature: float = 0.05,
        max_output_tokens: int = 4000,
        client: Optional[httpx.AsyncClient] = None,
        scorer=None,
    ):
        super().__init__(vendor.name, priority=priority, scorer=scorer)
        self.vendor = vendor
        self.api_key = api_key
        self._model = model
        self.timeout = timeout
        self.temperature = temperature
        self.detail_temperature = detail_temperature
        self.max_output_tokens = max_output_tokens
        self._client = client

    @property
    def model(self) -> Optional[str]:
        return self._model

    def available(self) -> bool:
        return bool(self.api_key and self.api_key.strip())

    async def complete(self, request: ExtractionRequest) -> str:
        if not self.available():
            raise ProviderUnavailable(f"Provider '{self.provider_id}' has no API key configured")

        system, user = build_prompt(
            request.capability.value, request.content, request.site_id, request.base_record
        )
        temperature = self.detail_temperature if request.capability == Capability.DETAIL else self.temperature
        http_request = self.vendor.build_request(
            self.api_key, self._model, system, user,
            temperature=temperature, max_tokens=self.max_output_tokens,
        )

        try:
            response = await self._post(http_request)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            body = e.response.text
            raise ProviderError(
                f"HTTP {status_code} from {self.provider_id}: {body[:300]}",
                status_code=status_code,
                retry_after=parse_retry_after_header(e.response.headers.get('retry-after')),
                body=body,
            ) from e
        except httpx.TimeoutException as e:
            raise TransientProviderError(f"Timeout calling {self.provider_id}: {e}") from e
        except httpx.NetworkError as e:
            raise TransientProviderError(f"Network error calling {self.provider_id}: {e}") from e

        try:
            data = response.json()
        except ValueError as e:
            raise TransientProviderError(f"Invalid JSON envelope from {self.provider_id}: {e}") from e

        text = self.vendor.parse_response(data)
        self.logger.debug(f"[{self.provider_id}] {request.capability.value}: {len(text)} chars returned")
        return text

    async def _post(self, http_request: HttpRequest) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(
                http_request.url, headers=http_request.headers, json=http_request.payload, timeout=self.timeout
            )
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.post(http_request.url, headers=http_request.headers, json=http_request.payload)
