from .service import EnrollmentQueryService

__all__ = ["EnrollmentQueryService"]
