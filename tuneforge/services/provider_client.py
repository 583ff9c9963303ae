"""HTTP client for the Suno-compatible music generation provider.

Deep module: callers get parsed results or a ``ProviderError``. Retries on
connection errors, timeouts and 5xx are handled internally; 4xx responses
are not retried.
"""

import logging
import threading
import time
from typing import Any, Dict, Optional

import httpx

from ..core.config import settings
from ..exceptions import ProviderError, ProviderNotConfiguredError
from ..schemas.provider import ProviderTaskStatus

logger = logging.getLogger(__name__)

RETRY_BASE_DELAY = 1.0  # seconds; exponential: 1s, 2s, 4s


class SunoClient:
    """Synchronous client for the provider's submit / status / credits / persona calls.

    Args:
        base_url: Provider base URL, e.g. ``https://api.sunoapi.com/api/v1``.
        api_key: Bearer key. Empty means the provider is not configured.
        timeout: Seconds per request.
        max_retries: Attempts per request for retryable failures.
        transport: Optional httpx transport (tests use ``httpx.MockTransport``).
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        transport: Optional[httpx.BaseTransport] = None,
        retry_base_delay: float = RETRY_BASE_DELAY,
    ):
        self.base_url = (base_url or settings.suno_api_base).rstrip("/")
        self.api_key = settings.suno_api_key if api_key is None else api_key
        self.timeout = timeout or settings.suno_request_timeout
        self.max_retries = max(1, max_retries or settings.suno_max_retries)
        self.retry_base_delay = retry_base_delay
        self._transport = transport
        self._client: Optional[httpx.Client] = None

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _get_client(self) -> httpx.Client:
        if not self.configured:
            raise ProviderNotConfiguredError()
        if self._client is None or self._client.is_closed:
            self._client = httpx.Client(
                base_url=self.base_url,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        """Send a request and return the decoded JSON body.

        Raises:
            ProviderError: transport failure after retries, non-2xx status,
                or a body that is not a JSON object.
        """
        client = self._get_client()
        last_error = ""
        last_status = 0

        for attempt in range(self.max_retries):
            try:
                resp = client.request(method, path, **kwargs)
            except (httpx.TransportError, httpx.TimeoutException) as exc:
                last_error = f"{type(exc).__name__}: {exc}"
                last_status = 0
            else:
                if resp.status_code < 400:
                    try:
                        body = resp.json()
                    except ValueError as exc:
                        raise ProviderError(f"Provider returned invalid JSON for {path}: {exc}") from exc
                    if not isinstance(body, dict):
                        raise ProviderError(f"Provider returned unexpected body for {path}")
                    return body

                last_status = resp.status_code
                last_error = f"API returned {resp.status_code}: {resp.text[:500]}"
                if resp.status_code < 500 and resp.status_code != 429:
                    raise ProviderError(last_error, upstream_status=resp.status_code)

            if attempt < self.max_retries - 1:
                delay = self.retry_base_delay * (2 ** attempt)
                logger.warning(
                    "Provider %s %s failed (attempt %d/%d), retrying in %.1fs: %s",
                    method, path, attempt + 1, self.max_retries, delay, last_error,
                )
                time.sleep(delay)

        raise ProviderError(last_error or f"Provider request failed: {method} {path}", upstream_status=last_status)

    # ----- operations ------------------------------------------------------

    def create_music(self, payload: Dict[str, Any]) -> str:
        """Submit a generation request and return the provider task id."""
        body = self._request("POST", "/suno/create", json=payload)
        task_id = body.get("task_id")
        if not task_id and isinstance(body.get("data"), dict):
            task_id = body["data"].get("task_id")
        if not task_id:
            raise ProviderError(f"Provider response has no task_id: {body.get('message', body)}")
        logger.info("Submitted generation task %s", task_id, extra={"task_id": task_id})
        return str(task_id)

    def get_task(self, task_id: str) -> ProviderTaskStatus:
        """Fetch the current clip states for *task_id*."""
        body = self._request("GET", f"/suno/task/{task_id}")
        return ProviderTaskStatus.from_payload(body)

    def get_credits(self) -> Dict[str, int]:
        body = self._request("GET", "/get-credits")
        credits = int(body.get("credits") or 0)
        extra = int(body.get("extra_credits") or 0)
        return {"credits": credits, "extra_credits": extra, "total": credits + extra}

    def create_persona(self, name: str, description: str, clip_id: str) -> str:
        """Register a voice persona from an existing clip; returns the provider persona id."""
        body = self._request(
            "POST",
            "/suno/persona",
            json={"name": name, "description": description, "continue_clip_id": clip_id},
        )
        persona_id = body.get("persona_id")
        if not persona_id:
            raise ProviderError(f"Provider response has no persona_id: {body.get('message', body)}")
        return str(persona_id)


_default_client: Optional[SunoClient] = None
_default_client_lock = threading.Lock()


def get_provider() -> SunoClient:
    """FastAPI dependency returning the process-wide provider client.

    Handlers run on the threadpool, so creation is guarded: concurrent first
    requests share one client.
    """
    global _default_client
    if _default_client is None:
        with _default_client_lock:
            if _default_client is None:
                _default_client = SunoClient()
    return _default_client
