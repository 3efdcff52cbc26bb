from .backend import EmailBackend, InMemoryEmailBackend, SMTPEmailBackend
from .service import NotificationEvent, NotificationService

__all__ = [
    "EmailBackend",
    "InMemoryEmailBackend",
    "NotificationEvent",
    "NotificationService",
    "SMTPEmailBackend",
]
