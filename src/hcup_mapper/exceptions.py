"""
Exception types raised by hcup_mapper.

Every error derives from HCUPMapperError and from the builtin that best
describes it, so callers catching ValueError / LookupError keep working.
"""

from typing import Optional


class HCUPMapperError(Exception):
    """Base class for all hcup_mapper errors."""


class InvalidFamily(HCUPMapperError, ValueError):
    """Family is not one of diagnosis/dx or procedure/pr."""


class InvalidVersionFormat(HCUPMapperError, ValueError):
    """Version string is not 'vYYYY.N' or 'vYYYY-N'."""


class CatalogUnreachable(HCUPMapperError, ConnectionError):
    """A catalog page or artifact could not be reached."""


class NoVersionFound(HCUPMapperError, LookupError):
    """No version could be discovered from any catalog source."""


class ResolutionCancelled(HCUPMapperError):
    """A probe sequence was cancelled by the caller."""


class InvalidMapping(HCUPMapperError, ValueError):
    """Mapping table argument is unusable."""


class InvalidOutputFormat(HCUPMapperError, ValueError):
    """Output format is neither 'long' nor 'wide'."""


class ColumnNotFound(HCUPMapperError, ValueError):
    """
    A required column could not be found.

    Attributes:
        role: Logical role that failed ("code", "category", "user_code", ...)
        available: Column names that were searched
    """

    def __init__(self, role: str, message: Optional[str] = None, available=None):
        self.role = role
        self.available = list(available) if available is not None else []
        if message is None:
            message = f"Could not identify {role} column"
            if self.available:
                message += f". Available columns: {self.available}"
        super().__init__(message)


class OutputColumnConflict(HCUPMapperError, ValueError):
    """
    A records column shares a name with a column the result would write.

    Raised for the category and description output names and, in wide
    format, for the numbered category slots. The mapping table itself is fine.
    """


class ChangeLogNotFound(HCUPMapperError, LookupError):
    """No change log could be located for a release."""
