from review_orchestrator.models.review import FragmentStatus


class ReviewError(Exception):
    """Base class for all review orchestration errors."""


class InputError(ReviewError):
    """Malformed trigger, diff or configuration. Never retried."""


class ProviderError(ReviewError):
    """Failure of one provider call for one chunk.

    Provider errors are absorbed by the dispatcher into the fragment status
    and never propagate further.
    """

    retryable = False
    status = FragmentStatus.FAILED
    reason = "provider_error"


class AuthError(ProviderError):
    reason = "auth_error"


class RateLimitedError(ProviderError):
    retryable = True
    reason = "rate_limited"


class ProviderTimeoutError(ProviderError):
    retryable = True
    status = FragmentStatus.TIMEOUT
    reason = "timeout"


class MalformedResponseError(ProviderError):
    reason = "malformed"


class ProviderUnavailableError(ProviderError):
    retryable = True
    reason = "unavailable"


class InfrastructureError(ReviewError):
    """Failure talking to the hosting platform (diff fetch, publish)."""


class NotFoundError(InfrastructureError):
    pass


class UnauthorizedError(InfrastructureError):
    pass


class PublishUnavailableError(InfrastructureError):
    """Transient publish failure, retried with the provider retry policy."""


class RunTimeoutError(ReviewError):
    pass
