import asyncio
from pathlib import Path
from typing import Any

import pytest

from taskforge.errors import ProviderError
from taskforge.providers import AIProvider, CommandProvider, EchoProvider, ProviderBridge
from taskforge.providers import base as provider_base


class ImmediateProvider(AIProvider):
    """Answers inside ``send_request``, before the caller starts waiting."""

    def send_request(self, prompt: str, context: dict[str, Any], mode: str) -> str:
        request_id = f"now-{len(prompt)}"
        self._emit_response(prompt.upper(), request_id)
        return request_id


def test_echo_provider_answers_through_bridge() -> None:
    async def _scenario() -> None:
        provider = EchoProvider()
        bridge = ProviderBridge(provider)

        answer = await bridge.request("Summarize\nthe rest", {"k": "v"}, mode="analyze")

        assert answer == "[analyze] Summarize"
        assert provider.requests[0]["context"] == {"k": "v"}
        assert bridge.outstanding == 0

    asyncio.run(_scenario())


def test_concurrent_requests_are_correlated_by_id() -> None:
    async def _scenario() -> None:
        bridge = ProviderBridge(EchoProvider(lambda prompt, context, mode: prompt * 2))

        answers = await asyncio.gather(*(bridge.request(f"p{index}") for index in range(5)))

        assert answers == [f"p{index}p{index}" for index in range(5)]

    asyncio.run(_scenario())


def test_provider_error_raises_provider_error() -> None:
    def _broken(prompt: str, context: dict[str, Any], mode: str) -> str:
        raise RuntimeError("quota exhausted")

    async def _scenario() -> None:
        bridge = ProviderBridge(EchoProvider(_broken))

        with pytest.raises(ProviderError, match="quota exhausted") as excinfo:
            await bridge.request("hello")

        assert excinfo.value.request_id == "echo-1"
        assert excinfo.value.retriable is True

    asyncio.run(_scenario())


def test_timeout_raises_and_late_answer_is_dropped() -> None:
    async def _scenario() -> None:
        provider = EchoProvider(delay_seconds=0.05)
        bridge = ProviderBridge(provider, timeout_seconds=0.01)

        with pytest.raises(ProviderError, match="timed out"):
            await bridge.request("slow")
        await asyncio.sleep(0.08)

        assert bridge.outstanding == 0
        assert bridge._unclaimed == {}

    asyncio.run(_scenario())


def test_answer_before_wait_is_not_lost() -> None:
    async def _scenario() -> None:
        bridge = ProviderBridge(ImmediateProvider())

        assert await bridge.request("quick") == "QUICK"

    asyncio.run(_scenario())


def test_command_provider_build_command_shape() -> None:
    provider = CommandProvider("claude", Path("."), extra_args=["--model", "x"])

    command = provider.build_command("Do it", {"file": "a.py"}, "fix")

    assert command[:4] == ["claude", "--model", "x", "-p"]
    assert command[4].startswith("Mode: fix\n\nDo it")
    assert '"file": "a.py"' in command[4]


def test_command_provider_missing_binary_reports_error(tmp_path: Path) -> None:
    async def _scenario() -> None:
        bridge = ProviderBridge(CommandProvider("taskforge-missing-binary-xyz", tmp_path))

        with pytest.raises(ProviderError, match="not found"):
            await bridge.request("hello")

    asyncio.run(_scenario())


class SilentProvider(AIProvider):
    """Never answers unless the test pushes a response for an id."""

    def __init__(self) -> None:
        super().__init__()
        self.sent = 0

    def send_request(self, prompt: str, context: dict[str, Any], mode: str) -> str:
        self.sent += 1
        return f"silent-{self.sent}"


def test_expired_and_unclaimed_ids_are_bounded(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(provider_base, "MAX_TRACKED_IDS", 3)

    async def _scenario() -> None:
        provider = SilentProvider()
        bridge = ProviderBridge(provider, timeout_seconds=0.001)

        for _ in range(5):
            with pytest.raises(ProviderError, match="timed out"):
                await bridge.request("nobody home")
        for index in range(5):
            provider._emit_response("stray", f"unknown-{index}")

        assert list(bridge._expired) == ["silent-3", "silent-4", "silent-5"]
        assert list(bridge._unclaimed) == ["unknown-2", "unknown-3", "unknown-4"]

        provider._emit_response("late", "silent-5")
        assert "silent-5" not in bridge._expired
        assert "silent-5" not in bridge._unclaimed

    asyncio.run(_scenario())
