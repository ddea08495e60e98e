from betledger.errors import UpstreamUnavailable


class FeedAPIError(UpstreamUnavailable):
    """Base exception for odds/outcome feed errors."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        # HTTP status of the failed feed response, not the API mapping
        self.feed_status_code = status_code


class FeedTimeoutError(FeedAPIError):
    """Feed did not answer in time."""

    pass


class FeedRateLimitError(FeedAPIError):
    """Rate limit exceeded."""

    pass


class FeedNotFoundError(FeedAPIError):
    """Endpoint not found."""

    pass
