"""Quote business logic."""

from .mailer import QuoteMailer, SmtpQuoteMailer
from .service import Actor, ClientInfo, QuoteService, TransitionOutcome

__all__ = [
    "Actor",
    "ClientInfo",
    "QuoteMailer",
    "QuoteService",
    "SmtpQuoteMailer",
    "TransitionOutcome",
]
