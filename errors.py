"""
Error kinds raised by the daily challenge workflow and its collaborators.
"""


class WhereOnEarthError(Exception):
    """Base class for all daily challenge errors."""
    kind = "error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__doc__)
        self.message = message or self.__class__.__doc__


class LookupFailure(WhereOnEarthError):
    """Unable to retrieve the location details of the image."""
    kind = "lookup_failure"


class ProviderUnavailable(WhereOnEarthError):
    """The image provider could not supply a candidate right now."""
    kind = "provider_unavailable"

    def __init__(self, message: str = "", source=None):
        super().__init__(message)
        self.source = source


class NoSuitableImage(ProviderUnavailable):
    """Couldn't find a suitable image."""
    kind = "no_suitable_image"


class QuotaExceeded(ProviderUnavailable):
    """The upstream service has exceeded its usage limits."""
    kind = "quota_exceeded"


class ConfigurationMissing(WhereOnEarthError):
    """Storage connection string is not configured."""
    kind = "configuration_missing"
