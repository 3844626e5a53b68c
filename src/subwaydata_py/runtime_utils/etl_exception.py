from typing import Any, Dict


class EtlException(Exception):
    """
    Generic exception for the subwaydata ETL pipeline

    context (day, feed ids, failing step, ...) can be attached after the fact
    so that a failure reported at the top of a batch is diagnosable on its own.
    """

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = {}

    def add_context(self, **context: Any) -> "EtlException":
        """add context to the exception, keeping values that are already set"""
        for key, value in context.items():
            self.context.setdefault(key, value)
        return self

    def __str__(self) -> str:
        if not self.context:
            return self.message
        context = ", ".join(f"{key}={value}" for key, value in self.context.items())
        return f"{self.message} ({context})"


class ConfigError(EtlException):
    """
    The ETL configuration is missing or malformed. Raised before any day work.
    """


class ArgumentException(EtlException):
    """
    General Error to throw when command line arguments are malformed
    """


class LedgerUnavailable(EtlException):
    """
    The metadata ledger could not be read or written
    """


class LedgerConflict(EtlException):
    """
    A concurrent writer advanced a ledger record before this commit landed
    """


class FeedUnavailable(EtlException):
    """
    Raw feed data for a day could not be acquired from the feed archive
    """


class DecodeError(EtlException):
    """
    Raw feed data could not be decoded into trips
    """


class SerializationError(EtlException):
    """
    Trips could not be serialized into the export archive. This is a defect,
    not something a rerun will fix.
    """


class PublishError(EtlException):
    """
    The export archive could not be written to durable storage
    """


class PurgeError(EtlException):
    """
    A processed day could not be purged
    """


class BacklogCancelled(EtlException):
    """
    Work was stopped because the process was asked to shut down
    """
