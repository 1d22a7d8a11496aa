"""Exception hierarchy for the shortlink service.

Routes translate these into HTTP responses; the click pipeline treats them as
non-fatal observations.
"""

__all__ = [
    "ShortlinkError",
    "LinkNotFoundError",
    "LinkCodeExistsError",
    "LinkValidationError",
    "InvalidURLError",
    "InvalidCodeError",
    "SpamDomainError",
    "PipelineClosedError",
]


class ShortlinkError(Exception):
    """Base class for all service errors."""

    code = "internal_error"


class LinkNotFoundError(ShortlinkError):
    code = "not_found"

    def __init__(self, short_code: str) -> None:
        super().__init__(f"Link not found: {short_code}")
        self.short_code = short_code


class LinkCodeExistsError(ShortlinkError):
    code = "code_exists"

    def __init__(self, short_code: str) -> None:
        super().__init__(f"Short code '{short_code}' is already taken")
        self.short_code = short_code


class LinkValidationError(ShortlinkError):
    code = "invalid_request"


class InvalidURLError(LinkValidationError):
    code = "invalid_url"

    def __init__(self) -> None:
        super().__init__("Invalid URL format")


class InvalidCodeError(LinkValidationError):
    code = "invalid_code"

    def __init__(self) -> None:
        super().__init__("Custom code must be 4-12 alphanumeric characters")


class SpamDomainError(LinkValidationError):
    code = "spam_domain"

    def __init__(self) -> None:
        super().__init__("Domain is blacklisted")


class PipelineClosedError(ShortlinkError):
    """Raised by ClickIngestor.submit once the pipeline has been shut down."""

    code = "pipeline_closed"

    def __init__(self) -> None:
        super().__init__("Click pipeline is closed")
