"""
Error taxonomy for the enrichment pipeline.

Only SourceReadError aborts a refresh run. Provider and secondary-source
errors are caught at the fetcher boundary and degrade to null market fields;
BuildTimeout is the retryable per-request condition.
"""


class PortfolioError(Exception):
    """Base class for pipeline errors."""


class SourceReadError(PortfolioError):
    """The holdings sheet is missing, unreadable or has no usable sheet."""


class ProviderError(PortfolioError):
    """The primary quote provider failed for a batch."""


class ProviderTimeout(ProviderError):
    """A batch did not finish within its time budget."""


class SecondaryEnrichmentError(PortfolioError):
    """The optional fundamentals source failed for a symbol."""


class BuildTimeout(PortfolioError):
    """No snapshot became available within the request timeout."""

    def __init__(self, timeout_s: float):
        super().__init__(f"Portfolio is still being built (waited {timeout_s:g}s)")
        self.timeout_s = timeout_s
