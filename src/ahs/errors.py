"""
Error taxonomy.

Every failure the tool can report is an AhsError. The command line turns
them into a single log line and exit status 1; nothing below ahs.cli
catches them except the retry helper, which only swallows the transient
kinds it was told to retry.
"""

from __future__ import annotations


class AhsError(Exception):
    exit_code = 1


# --------------------------
# Environment
# --------------------------
class PrivilegeError(AhsError):
    pass


class MetadataUnavailable(AhsError):
    pass


class ConfigurationError(AhsError):
    pass


class CommandNotImplemented(AhsError):
    def __init__(self, command: str):
        super().__init__(f"Function {command} is not implemented")
        self.command = command


# --------------------------
# Transient remote failures
# --------------------------
class RemoteCallError(AhsError):
    """A tag store call failed in a way that may succeed on retry."""


# --------------------------
# Data errors (never retried, except TagNotFound on the base tag)
# --------------------------
class DataError(AhsError):
    pass


class TagNotFound(DataError):
    def __init__(self, resource_id: str, key: str):
        super().__init__(f"Instance '{resource_id}' doesn't contain tag '{key}'")
        self.resource_id = resource_id
        self.key = key


class GroupTagMissing(DataError):
    pass


class GroupTagAmbiguous(DataError):
    pass


class InvalidSequentialTagValue(DataError):
    pass


class InvalidAvailabilityZone(DataError):
    pass


class InvalidRegion(DataError):
    pass


class InvalidSuffixLength(DataError):
    pass


class HostnameError(AhsError):
    """The local system refused the hostname or the files persisting it."""
