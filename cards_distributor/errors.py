"""
Exceptions raised at the boundaries of Poker Cards Distributor.

Only boundary failures (configuration, signing, network, decoding) are
exceptions. Business conditions such as missing shares travel as values,
see cards_distributor.results.
"""

from typing import Optional


class DistributorError(Exception):
    """Base class for every error raised by this package."""


class ConfigError(DistributorError):
    """Configuration or persisted contract info is missing or invalid."""


class PermitError(DistributorError):
    """A permit could not be built or signed."""


class MalformedResponse(DistributorError):
    """The contract returned a payload that does not match the protocol."""


class QueryUnavailable(DistributorError):
    """The ledger endpoint could not be reached."""


class QueryTimeout(DistributorError):
    """A query or transaction did not complete within its bound."""


class ContractError(DistributorError):
    """The contract or node rejected a request."""

    def __init__(self, message: str, status: Optional[int] = None, code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status = status
        self.code = code

    def __str__(self):
        parts = [self.message]
        if self.status is not None:
            parts.append(f"status={self.status}")
        if self.code is not None:
            parts.append(f"code={self.code}")
        return " ".join(parts)
