from sqlalchemy.ext.asyncio import AsyncSession

from coursecart_api.core.settings import get_settings

from .errors import (
    CartClearError,
    CustomerUpdateError,
    DuplicatePayment,
    EmailError,
    EnrollmentError,
    EnrollmentRateLimited,
    EnrollmentRejected,
    FulfillmentIncomplete,
    IdentityProvisionError,
    LmsRequestError,
    PersistenceError,
    SignatureError,
)
from .identity import IdentityProvisioner
from .lms_client import EnrollmentRequest, LmsClient, LmsUser
from .orchestrator import FulfillmentOrchestrator, FulfillmentReport, FulfillmentStage, Notifier
from .retry import RetryPolicy
from .store import EnrollmentRecord, FulfillmentStore, IdentityMapping, SqlAlchemyFulfillmentStore
from .validity import add_months, compute_expiry


def build_orchestrator(
    db_session: AsyncSession,
    *,
    lms_client: LmsClient,
    notifier: Notifier,
) -> FulfillmentOrchestrator:
    """Wire the saga with database persistence and configured pacing."""
    settings = get_settings()
    return FulfillmentOrchestrator(
        SqlAlchemyFulfillmentStore(db_session),
        lms_client,
        notifier,
        retry_policy=RetryPolicy(
            max_retries=settings.lms_enrollment_max_retries,
            delay_seconds=settings.lms_enrollment_retry_delay_seconds,
        ),
        identity_pacing_seconds=settings.lms_identity_pacing_seconds,
        enrollment_pacing_seconds=settings.lms_enrollment_pacing_seconds,
    )


__all__ = [
    "CartClearError",
    "CustomerUpdateError",
    "DuplicatePayment",
    "EmailError",
    "EnrollmentError",
    "EnrollmentRateLimited",
    "EnrollmentRecord",
    "EnrollmentRejected",
    "EnrollmentRequest",
    "FulfillmentIncomplete",
    "FulfillmentOrchestrator",
    "FulfillmentReport",
    "FulfillmentStage",
    "FulfillmentStore",
    "IdentityMapping",
    "IdentityProvisionError",
    "IdentityProvisioner",
    "LmsClient",
    "LmsRequestError",
    "LmsUser",
    "Notifier",
    "PersistenceError",
    "RetryPolicy",
    "SignatureError",
    "SqlAlchemyFulfillmentStore",
    "add_months",
    "build_orchestrator",
    "compute_expiry",
]
