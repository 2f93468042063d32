from taskforge.providers.base import AIProvider, ProviderBridge
from taskforge.providers.command import CommandProvider
from taskforge.providers.echo import EchoProvider, echo_responder

__all__ = [
    "AIProvider",
    "CommandProvider",
    "EchoProvider",
    "ProviderBridge",
    "echo_responder",
]
