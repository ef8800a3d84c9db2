from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse


class MarketplaceError(Exception):
    status_code: int = status.HTTP_400_BAD_REQUEST
    detail: str = "Request could not be processed"

    def __init__(self, detail: str | None = None):
        if detail is not None:
            self.detail = detail
        super().__init__(self.detail)


# ---------- authorization ----------
class NotAuthorized(MarketplaceError):
    status_code = status.HTTP_403_FORBIDDEN
    detail = "Not authorized"


# ---------- lookups ----------
class JobNotFound(MarketplaceError):
    status_code = status.HTTP_404_NOT_FOUND
    detail = "Job not found"


class ApplicationNotFound(MarketplaceError):
    status_code = status.HTTP_404_NOT_FOUND
    detail = "Application not found"


class PaymentNotFound(MarketplaceError):
    status_code = status.HTTP_404_NOT_FOUND
    detail = "Payment not found"


class FraudLogNotFound(MarketplaceError):
    status_code = status.HTTP_404_NOT_FOUND
    detail = "Fraud log not found"


class UserNotFound(MarketplaceError):
    status_code = status.HTTP_404_NOT_FOUND
    detail = "User not found"


# ---------- preconditions ----------
class JobNotAcceptingApplications(MarketplaceError):
    detail = "This job is not accepting applications"


class JobFull(MarketplaceError):
    detail = "This job has reached maximum testers"


class AlreadyApplied(MarketplaceError):
    detail = "You have already applied to this job"


class JobAlreadyCancelled(MarketplaceError):
    detail = "Job is already cancelled"


class JobAlreadyCompleted(MarketplaceError):
    detail = "Cannot cancel a completed job"


class JobNotDraft(MarketplaceError):
    detail = "Only draft jobs can be funded"


class TestingNotFinished(MarketplaceError):
    detail = "Testing period has not ended yet"


class NothingToRetry(MarketplaceError):
    status_code = status.HTTP_409_CONFLICT
    detail = "There is no failed transfer to retry"


class InvalidTransition(MarketplaceError):
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, entity: str, current, target):
        self.current = current
        self.target = target
        super().__init__(f"{entity} cannot move from {current} to {target}")


class TransitionConflict(MarketplaceError):
    status_code = status.HTTP_409_CONFLICT
    detail = "The record was changed by another request, reload and try again"


# ---------- fraud ----------
class FraudBlocked(MarketplaceError):
    status_code = status.HTTP_403_FORBIDDEN
    detail = "Unable to process application. Please contact support."


# ---------- integrity ----------
class LedgerIntegrityError(MarketplaceError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    detail = "Ledger integrity check failed"


async def marketplace_error_handler(request: Request, exc: MarketplaceError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


def register_exception_handlers(app: FastAPI):
    app.add_exception_handler(MarketplaceError, marketplace_error_handler)
