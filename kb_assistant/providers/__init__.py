"""
Backends the assistant talks to over HTTP:

- model_stream : streaming chat model with tool calling (turn controller)
- completion   : one-shot chat completion (rewrite tool)
"""

from .completion import RewriteError, call_rewrite_model
from .model_stream import ModelBackendError, OpenAIStreamBackend

__all__ = [
    "ModelBackendError",
    "OpenAIStreamBackend",
    "RewriteError",
    "call_rewrite_model",
]
