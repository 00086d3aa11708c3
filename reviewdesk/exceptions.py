"""
ReviewDesk - Pipeline Exceptions
Failure taxonomy shared by the fetcher, reply coach and dispatcher
"""


class ReviewDeskError(Exception):
    """Base class for pipeline errors"""


class IntegrationUnavailable(ReviewDeskError):
    """Integration is missing, disconnected, or its credential was rejected"""

    def __init__(self, platform: str, reason: str):
        self.platform = platform
        self.reason = reason
        super().__init__(f"{platform} integration unavailable: {reason}")


class PlatformError(ReviewDeskError):
    """Upstream platform failed or rate-limited the request"""

    def __init__(self, platform: str, message: str, status_code: int = None, rate_limited: bool = False):
        self.platform = platform
        self.status_code = status_code
        self.rate_limited = rate_limited
        super().__init__(f"{platform} error: {message}")


class FetchTimeout(PlatformError):
    """Platform did not answer within the fetch timeout"""

    def __init__(self, platform: str, timeout: float):
        self.timeout = timeout
        super().__init__(platform, f"no response within {timeout}s")


class ReplyGenerationFailure(ReviewDeskError):
    """Generation service failed; the reply coach turns this into a fallback draft"""


class NotificationDeliveryFailure(ReviewDeskError):
    """A channel send failed after its retry budget"""

    def __init__(self, channel: str, message: str):
        self.channel = channel
        super().__init__(f"{channel} delivery failed: {message}")
