# -*- coding: utf-8 -*-

import logging
from typing import Tuple, Optional

from . import errors

logger = logging.getLogger(__name__)


def read_compressed_int(data, offset: int = 0) -> Tuple[int, int]:
    """
    Given bytes, read a compressed integer at offset per
    spec ECMA-335 II.23.2 Blobs and signatures.
    Returns tuple: value, number of bytes read.

    Raises TruncatedInput when the leading byte asks for more bytes
    than remain, and MalformedHeap on an invalid leading byte.
    """
    if not data or offset >= len(data):
        raise errors.TruncatedInput("no data for compressed int", offset=offset, needed=1)

    lead = data[offset]
    if lead & 0x80 == 0:
        # values 0x00 to 0x7f
        return lead, 1
    elif lead & 0xC0 == 0x80:
        # values 0x80 to 0x3fff
        if len(data) - offset < 2:
            raise errors.TruncatedInput("compressed int needs 2 bytes", offset=offset, needed=2)
        value = (lead & 0x3F) << 8
        value |= data[offset + 1]
        return value, 2
    elif lead & 0xE0 == 0xC0:
        # values 0x4000 to 0x1fffffff
        if len(data) - offset < 4:
            raise errors.TruncatedInput("compressed int needs 4 bytes", offset=offset, needed=4)
        value = (lead & 0x1F) << 24
        value |= data[offset + 1] << 16
        value |= data[offset + 2] << 8
        value |= data[offset + 3]
        return value, 4

    logger.warning("invalid compressed int: leading byte: 0x%02x", lead)
    raise errors.MalformedHeap("invalid compressed int: leading byte 0x{:02x}".format(lead))


def num_bytes_to_struct_char(n: int) -> Optional[str]:
    """
    Given number of bytes, return the struct char that can hold those bytes.
    Returns None on invalid value.

    For example,
        2 = H
        4 = I
    """
    if n > 8:
        logger.warning("invalid format specifier: %d > 8", n)
        return None
    elif n > 4:
        return "Q"
    elif n > 2:
        return "I"
    elif n > 1:
        return "H"
    elif n == 1:
        return "B"
    else:
        logger.warning("invalid format specifier: %d", n)
        return None


def align4(n: int) -> int:
    """Round n up to the next multiple of four."""
    return (n + 3) & ~3
