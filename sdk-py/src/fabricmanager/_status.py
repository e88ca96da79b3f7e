"""Status codes returned by the fabric manager and the FMError taxonomy."""

from __future__ import annotations

import enum


class StatusCode(enum.IntEnum):
    """Return codes of the fabric manager API. 0 is success."""

    SUCCESS = 0
    BADPARAM = -1
    GENERIC_ERROR = -2
    NOT_SUPPORTED = -3
    UNINITIALIZED = -4
    TIMEOUT = -5
    VERSION_MISMATCH = -6
    IN_USE = -7
    NOT_CONFIGURED = -8
    CONNECTION_NOT_VALID = -9
    NVLINK_ERROR = -10
    RESOURCE_BAD = -11
    RESOURCE_IN_USE = -12
    RESOURCE_NOT_IN_USE = -13
    RESOURCE_EXHAUSTED = -14
    RESOURCE_NOT_READY = -15
    PARTITION_EXISTS = -16
    PARTITION_ID_IN_USE = -17
    PARTITION_ID_NOT_IN_USE = -18
    PARTITION_NAME_IN_USE = -19
    PARTITION_NAME_NOT_IN_USE = -20
    PARTITION_ID_NAME_MISMATCH = -21
    NOT_READY = -22
    RESOURCE_USED_IN_THIS_PARTITION = -23
    RESOURCE_USED_IN_ANOTHER_PARTITION = -24


_MESSAGES: dict[int, str] = {
    StatusCode.SUCCESS: "Success",
    StatusCode.BADPARAM: "Bad parameter",
    StatusCode.GENERIC_ERROR: "Generic error",
    StatusCode.NOT_SUPPORTED: "Not supported",
    StatusCode.UNINITIALIZED: "Uninitialized",
    StatusCode.TIMEOUT: "Timeout",
    StatusCode.VERSION_MISMATCH: "Version mismatch",
    StatusCode.IN_USE: "Resource in use",
    StatusCode.NOT_CONFIGURED: "Not configured",
    StatusCode.CONNECTION_NOT_VALID: "Connection not valid",
    StatusCode.NVLINK_ERROR: "NVLink error",
    StatusCode.RESOURCE_BAD: "Bad resource",
    StatusCode.RESOURCE_IN_USE: "Resource in use",
    StatusCode.RESOURCE_NOT_IN_USE: "Resource not in use",
    StatusCode.RESOURCE_EXHAUSTED: "Resource exhausted",
    StatusCode.RESOURCE_NOT_READY: "Resource not ready",
    StatusCode.PARTITION_EXISTS: "Partition exists",
    StatusCode.PARTITION_ID_IN_USE: "Partition ID in use",
    StatusCode.PARTITION_ID_NOT_IN_USE: "Partition ID not in use",
    StatusCode.PARTITION_NAME_IN_USE: "Partition name in use",
    StatusCode.PARTITION_NAME_NOT_IN_USE: "Partition name not in use",
    StatusCode.PARTITION_ID_NAME_MISMATCH: "Partition ID name mismatch",
    StatusCode.NOT_READY: "Not ready",
    StatusCode.RESOURCE_USED_IN_THIS_PARTITION: "Resource used in this partition",
    StatusCode.RESOURCE_USED_IN_ANOTHER_PARTITION: "Resource used in another partition",
}

# The three sets are disjoint; codes outside all of them are terminal.
CONNECTION_CODES: frozenset[int] = frozenset({
    StatusCode.CONNECTION_NOT_VALID,
    StatusCode.UNINITIALIZED,
    StatusCode.TIMEOUT,
})

RESOURCE_CODES: frozenset[int] = frozenset({
    StatusCode.RESOURCE_BAD,
    StatusCode.RESOURCE_IN_USE,
    StatusCode.RESOURCE_NOT_IN_USE,
    StatusCode.RESOURCE_EXHAUSTED,
    StatusCode.RESOURCE_NOT_READY,
})

PARTITION_CODES: frozenset[int] = frozenset({
    StatusCode.PARTITION_EXISTS,
    StatusCode.PARTITION_ID_IN_USE,
    StatusCode.PARTITION_ID_NOT_IN_USE,
    StatusCode.PARTITION_NAME_IN_USE,
    StatusCode.PARTITION_NAME_NOT_IN_USE,
    StatusCode.PARTITION_ID_NAME_MISMATCH,
})


def status_message(code: int) -> str:
    """Return the descriptive message for a status code."""
    return _MESSAGES.get(code, "Unknown error")


class FMError(Exception):
    """A non-success status returned by the fabric manager.

    Carries the numeric ``code`` and its ``message``. Both are
    fixed at construction.
    """

    __slots__ = ("_code", "_message")

    def __init__(self, code: int, message: str | None = None) -> None:
        self._code = int(code)
        self._message = message if message is not None else status_message(code)
        super().__init__(self._code, self._message)

    @property
    def code(self) -> int:
        return self._code

    @property
    def message(self) -> str:
        return self._message

    @property
    def is_connection_error(self) -> bool:
        return self._code in CONNECTION_CODES

    @property
    def is_resource_error(self) -> bool:
        return self._code in RESOURCE_CODES

    @property
    def is_partition_error(self) -> bool:
        return self._code in PARTITION_CODES

    def __str__(self) -> str:
        return f"FabricManager error {self._code}: {self._message}"

    def __repr__(self) -> str:
        return f"FMError(code={self._code}, message={self._message!r})"


class ProtocolError(Exception):
    """The daemon sent bytes that violate the wire contract."""


def check_status(code: int) -> None:
    """Raise FMError for any non-success code."""
    if code != StatusCode.SUCCESS:
        raise FMError(code)


def is_connection_error(err: BaseException) -> bool:
    """True when the channel itself is unusable (retry after reconnecting)."""
    return isinstance(err, FMError) and err.is_connection_error


def is_resource_error(err: BaseException) -> bool:
    """True when a referenced hardware or logical resource is unavailable."""
    return isinstance(err, FMError) and err.is_resource_error


def is_partition_error(err: BaseException) -> bool:
    """True for partition identity or state conflicts."""
    return isinstance(err, FMError) and err.is_partition_error
