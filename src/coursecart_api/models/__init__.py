from .cart import CartItem
from .catalog import CatalogItem, CatalogOption, ProductTypeEnum, ValidityUnitEnum
from .enrollment import Enrollment, EnrollmentLifecycleEnum, EnrollmentOutcomeEnum
from .lms_identity import LmsIdentity
from .order import Order, PaymentStatusEnum
from .user import User
from .video_progress import VideoProgress
from .webhook_event import WebhookEvent, WebhookProviderEnum

__all__ = [
    "CartItem",
    "CatalogItem",
    "CatalogOption",
    "Enrollment",
    "EnrollmentLifecycleEnum",
    "EnrollmentOutcomeEnum",
    "LmsIdentity",
    "Order",
    "PaymentStatusEnum",
    "ProductTypeEnum",
    "User",
    "ValidityUnitEnum",
    "VideoProgress",
    "WebhookEvent",
    "WebhookProviderEnum",
]
