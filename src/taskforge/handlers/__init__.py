from taskforge.handlers.base import HandlerContext, PromptHandler
from taskforge.handlers.builtin import INSTRUCTIONS, EditorFixHandler, build_default_handlers

__all__ = [
    "INSTRUCTIONS",
    "EditorFixHandler",
    "HandlerContext",
    "PromptHandler",
    "build_default_handlers",
]
