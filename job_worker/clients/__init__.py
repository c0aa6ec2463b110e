"""Clients for services the handlers depend on."""

from .backend import BackendClient
from .email import EmailSendError, ResendEmailSender, strip_html

__all__ = [
    "BackendClient",
    "EmailSendError",
    "ResendEmailSender",
    "strip_html",
]
