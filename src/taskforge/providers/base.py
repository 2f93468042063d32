from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import OrderedDict
from collections.abc import Callable
from typing import Any

from taskforge.errors import ProviderError

logger = logging.getLogger(__name__)

ResponseCallback = Callable[[str, str], None]
ErrorCallback = Callable[[str, str], None]

# Bookkeeping for answers nobody waits for is capped; the oldest ids are forgotten first.
MAX_TRACKED_IDS = 256


class AIProvider(ABC):
    """Asynchronous request/response client for an AI model.

    ``send_request`` returns a request id immediately; the outcome arrives
    later through the ``response(text, request_id)`` or
    ``error(message, request_id)`` callbacks.
    """

    name: str = "provider"

    def __init__(self) -> None:
        self._response_callbacks: list[ResponseCallback] = []
        self._error_callbacks: list[ErrorCallback] = []

    def on_response(self, callback: ResponseCallback) -> None:
        self._response_callbacks.append(callback)

    def on_error(self, callback: ErrorCallback) -> None:
        self._error_callbacks.append(callback)

    def _emit_response(self, text: str, request_id: str) -> None:
        for callback in list(self._response_callbacks):
            callback(text, request_id)

    def _emit_error(self, message: str, request_id: str) -> None:
        for callback in list(self._error_callbacks):
            callback(message, request_id)

    @abstractmethod
    def send_request(self, prompt: str, context: dict[str, Any], mode: str) -> str:
        """Start a request and return its id without waiting for the answer."""


class ProviderBridge:
    """Correlates provider callbacks with awaiting coroutines by request id."""

    def __init__(self, provider: AIProvider, *, timeout_seconds: float = 90.0) -> None:
        self.provider = provider
        self.timeout_seconds = timeout_seconds
        self._waiting: dict[str, asyncio.Future[str]] = {}
        self._unclaimed: OrderedDict[str, tuple[bool, str]] = OrderedDict()
        self._expired: OrderedDict[str, None] = OrderedDict()
        provider.on_response(self._handle_response)
        provider.on_error(self._handle_error)

    @property
    def outstanding(self) -> int:
        return len(self._waiting)

    async def request(
        self,
        prompt: str,
        context: dict[str, Any] | None = None,
        mode: str = "chat",
    ) -> str:
        loop = asyncio.get_running_loop()
        request_id = self.provider.send_request(prompt, dict(context or {}), mode)
        future: asyncio.Future[str] = loop.create_future()
        early = self._unclaimed.pop(request_id, None)
        if early is not None:
            self._settle(future, *early, request_id)
        else:
            self._waiting[request_id] = future
        try:
            return await asyncio.wait_for(future, timeout=self.timeout_seconds)
        except TimeoutError as exc:
            self._track(self._expired, request_id, None)
            raise ProviderError(
                f"Provider request {request_id} timed out after {self.timeout_seconds:.1f}s",
                request_id=request_id,
                retriable=True,
            ) from exc
        except asyncio.CancelledError:
            self._track(self._expired, request_id, None)
            raise
        finally:
            self._waiting.pop(request_id, None)

    @staticmethod
    def _track(mapping: OrderedDict[str, Any], request_id: str, value: Any) -> None:
        mapping[request_id] = value
        mapping.move_to_end(request_id)
        while len(mapping) > MAX_TRACKED_IDS:
            dropped, _ = mapping.popitem(last=False)
            logger.debug("Forgetting untracked provider request %s", dropped)

    @staticmethod
    def _settle(future: asyncio.Future[str], ok: bool, payload: str, request_id: str) -> None:
        if future.done():
            return
        if ok:
            future.set_result(payload)
        else:
            future.set_exception(ProviderError(payload, request_id=request_id))

    def _deliver(self, request_id: str, ok: bool, payload: str) -> None:
        if request_id in self._expired:
            del self._expired[request_id]
            logger.warning("Dropping late provider answer for %s", request_id)
            return
        future = self._waiting.get(request_id)
        if future is None:
            # Providers that answer before send_request returns.
            self._track(self._unclaimed, request_id, (ok, payload))
            return
        future.get_loop().call_soon_threadsafe(self._settle, future, ok, payload, request_id)

    def _handle_response(self, text: str, request_id: str) -> None:
        self._deliver(request_id, True, text)

    def _handle_error(self, message: str, request_id: str) -> None:
        logger.debug("Provider error for %s: %s", request_id, message)
        self._deliver(request_id, False, message)
