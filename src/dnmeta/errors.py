# -*- coding: utf-8 -*-
"""
Errors raised while decoding CLI metadata.

Every error is fatal for the buffer being parsed: retrying with the same
bytes yields the same error.

Copyright (c) 2020-2024 MalwareFrank
"""


class dnFormatError(ValueError):
    """Base class for all metadata decoding errors."""
    pass


class InvalidSignature(dnFormatError):
    """The metadata root does not start with the BSJB magic."""
    pass


class TruncatedInput(dnFormatError):
    """A read would run past the end of the buffer, stream or table data."""

    def __init__(self, msg: str, offset=None, needed=None):
        super().__init__(msg)
        self.offset = offset
        self.needed = needed


class MalformedHeap(dnFormatError):
    """A heap index or heap encoding rule was violated."""
    pass


class UnsupportedTable(dnFormatError):
    """The valid mask names a table for which no schema is known."""

    def __init__(self, msg: str, number: int):
        super().__init__(msg)
        self.number = number


class MalformedMetadata(dnFormatError):
    """Structural invariant violated after the low-level decode succeeded."""
    pass
