"""Collaborator implementations: in-memory and HTTP."""

from chatflow.adapters.http_webhook import HttpWebhookInvoker
from chatflow.adapters.memory import InMemoryContactStore, InMemoryMessageSender, SentMessage

__all__ = [
    "HttpWebhookInvoker",
    "InMemoryContactStore",
    "InMemoryMessageSender",
    "SentMessage",
]
