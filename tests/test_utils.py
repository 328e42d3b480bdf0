# -*- coding: utf-8 -*-
import pytest

import dnmeta.utils
from dnmeta.errors import MalformedHeap, TruncatedInput


def test_compressed_int():
    assert (0x7f, 1) == dnmeta.utils.read_compressed_int(b"\x7f")
    assert (0x3f8f, 2) == dnmeta.utils.read_compressed_int(b"\xbf\x8f")
    assert (0x1eadbeef, 4) == dnmeta.utils.read_compressed_int(b"\xde\xad\xbe\xef")

    # these are the tests from
    # spec ECMA-335 II.23.2 Blobs and signatures.
    assert (0x03, 1) == dnmeta.utils.read_compressed_int(b"\x03")
    assert (0x7F, 1) == dnmeta.utils.read_compressed_int(b"\x7F")
    assert (0x80, 2) == dnmeta.utils.read_compressed_int(b"\x80\x80")
    assert (0x2E57, 2) == dnmeta.utils.read_compressed_int(b"\xAE\x57")
    assert (0x3FFF, 2) == dnmeta.utils.read_compressed_int(b"\xBF\xFF")
    assert (0x4000, 4) == dnmeta.utils.read_compressed_int(b"\xC0\x00\x40\x00")
    assert (0x1FFFFFFF, 4) == dnmeta.utils.read_compressed_int(b"\xDF\xFF\xFF\xFF")


def test_compressed_int_non_canonical_zero():
    assert (0, 2) == dnmeta.utils.read_compressed_int(b"\x80\x00")
    assert (0, 4) == dnmeta.utils.read_compressed_int(b"\xC0\x00\x00\x00")


def test_compressed_int_offset():
    assert (0x2E57, 2) == dnmeta.utils.read_compressed_int(b"\x00\x00\xAE\x57", 2)


def test_compressed_int_truncated():
    with pytest.raises(TruncatedInput):
        dnmeta.utils.read_compressed_int(b"")

    with pytest.raises(TruncatedInput):
        dnmeta.utils.read_compressed_int(b"\x80")

    with pytest.raises(TruncatedInput) as e:
        dnmeta.utils.read_compressed_int(b"\xC0\x00\x00")
    assert e.value.needed == 4


def test_compressed_int_invalid_lead():
    with pytest.raises(MalformedHeap):
        dnmeta.utils.read_compressed_int(b"\xE0\x00\x00\x00")

    with pytest.raises(MalformedHeap):
        dnmeta.utils.read_compressed_int(b"\xFF")


def test_struct_char():
    assert None is dnmeta.utils.num_bytes_to_struct_char(42)
    assert "Q" == dnmeta.utils.num_bytes_to_struct_char(8)
    assert "I" == dnmeta.utils.num_bytes_to_struct_char(4)
    assert "H" == dnmeta.utils.num_bytes_to_struct_char(2)
    assert "B" == dnmeta.utils.num_bytes_to_struct_char(1)
    assert None is dnmeta.utils.num_bytes_to_struct_char(0)


def test_align4():
    assert 0 == dnmeta.utils.align4(0)
    assert 4 == dnmeta.utils.align4(1)
    assert 4 == dnmeta.utils.align4(4)
    assert 12 == dnmeta.utils.align4(11)
