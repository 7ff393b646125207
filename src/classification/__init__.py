"""AI classification of mailbox messages."""
from .backend import CompletionBackend, OpenAICompletionBackend
from .classifier import AIClassifier, Judgment
from .response_parser import recover_json, truncate_text

__all__ = [
    "AIClassifier",
    "CompletionBackend",
    "Judgment",
    "OpenAICompletionBackend",
    "recover_json",
    "truncate_text",
]
