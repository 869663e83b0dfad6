"""Exceptions raised by data sources"""


class DataSourceError(Exception):
    """Base class for errors surfaced through a source's state."""


class SourceConnectionError(DataSourceError):
    """The upstream could not be reached or answered with an HTTP error."""


class ProcessingError(DataSourceError):
    """The upstream answered but the payload could not be decoded."""


class ConfigurationError(DataSourceError):
    """Required configuration is missing. Terminal for the source."""
