"""Gmail integration: credentials, mailbox access and message content."""
from .auth import GmailAuth
from .client import GmailClient, MailboxSource
from .extractor import ContentExtractor, ExtractedEmail
from .prefilter import FilterResult, RelevancePreFilter, sender_domain

__all__ = [
    "GmailAuth",
    "GmailClient",
    "MailboxSource",
    "ContentExtractor",
    "ExtractedEmail",
    "FilterResult",
    "RelevancePreFilter",
    "sender_domain",
]
