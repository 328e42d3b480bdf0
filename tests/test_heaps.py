# -*- coding: utf-8 -*-
import logging
import uuid

import pytest
import fixtures

from dnmeta import stream
from dnmeta.errors import MalformedHeap


def test_strings():
    heap = stream.StringsHeap(None, b"\x00Foo\x00Bar\x00")

    assert heap.get_str(0) == ""
    assert heap.get_str(1) == "Foo"
    assert heap.get_str(5) == "Bar"
    # an index into the middle of a string is valid
    assert heap.get_str(6) == "ar"

    item = heap.get(5)
    assert item == "Bar"
    assert item.value_bytes() == b"Bar"
    assert heap.get_str(5, as_bytes=True) == b"Bar"


def test_strings_without_leading_nul():
    heap = stream.StringsHeap(None, b"Foo\x00Bar\x00")
    assert heap.get_str(4) == "Bar"
    assert heap.get_str(0) == ""
    assert heap.get_str(1) == "oo"
    assert list(heap.items()) == [(0, "Foo"), (4, "Bar")]


def test_strings_empty_heap():
    heap = stream.StringsHeap(None, b"")
    assert heap.get_str(0) == ""

    with pytest.raises(MalformedHeap):
        heap.get(1)


def test_strings_invalid():
    heap = stream.StringsHeap(None, b"\x00Foo\x00Bar")

    # past the end
    with pytest.raises(MalformedHeap):
        heap.get(100)

    # no terminator
    with pytest.raises(MalformedHeap):
        heap.get(5)

    # invalid utf-8
    heap = stream.StringsHeap(None, b"\x00\xff\xfe\x00")
    with pytest.raises(MalformedHeap):
        heap.get(1)


def test_strings_max_length():
    heap = stream.StringsHeap(None, b"\x00" + b"A" * 32 + b"\x00")

    assert heap.get_str(1, max_length=32) == "A" * 32
    with pytest.raises(MalformedHeap):
        heap.get(1, max_length=31)


def test_strings_items():
    heap = stream.StringsHeap(None, b"\x00Foo\x00Bar\x00")
    assert list(heap.items()) == [(0, ""), (1, "Foo"), (5, "Bar")]


def test_user_strings():
    data, offsets = fixtures.us_heap(["Hello", "héllo"])
    heap = stream.UserStringHeap(None, data)

    assert heap.get_str(0) == ""

    hello = heap.get(offsets[0])
    assert hello == "Hello"
    assert hello.flag == 0
    assert hello.value_bytes() == "Hello".encode("utf-16-le")
    # length prefix, 10 bytes of text, flag byte
    assert hello.raw_size == 12

    accented = heap.get(offsets[1])
    assert accented.value == "héllo"
    assert accented.flag == 1


def test_user_strings_surrogate():
    data = b"\x00" + fixtures.compressed(3) + b"\x00\xd8\x01"
    heap = stream.UserStringHeap(None, data)

    assert heap.get_str(1) == "\ud800"


def test_user_strings_missing_flag(caplog):
    data = b"\x00" + fixtures.compressed(4) + "Hi".encode("utf-16-le")
    heap = stream.UserStringHeap(None, data)

    with caplog.at_level(logging.WARNING):
        item = heap.get(1)

    assert item.value == "Hi"
    assert item.flag is None
    assert "missing trailing flag" in caplog.text


def test_user_strings_items():
    data, offsets = fixtures.us_heap(["A", "B"])
    heap = stream.UserStringHeap(None, data)

    assert [(i, str(s)) for i, s in heap.items()] == [(0, ""), (offsets[0], "A"), (offsets[1], "B")]


def test_guids():
    heap = stream.GuidHeap(None, fixtures.MVID + b"\x11" * 16)

    assert heap.get(0) is None
    assert len(heap) == 2

    guid = heap.get(1)
    assert str(guid) == "12345678-1234-5678-0102-030405060708"
    assert guid.uuid == uuid.UUID("12345678-1234-5678-0102-030405060708")
    assert heap.get_str(1) == "12345678-1234-5678-0102-030405060708"

    assert heap[1] == b"\x11" * 16
    assert heap[-1] == b"\x11" * 16
    assert [g.value for g in heap] == [fixtures.MVID, b"\x11" * 16]

    with pytest.raises(MalformedHeap):
        heap.get(3)

    with pytest.raises(IndexError):
        heap[2]


def test_blobs():
    data, offsets = fixtures.blob_heap([b"\x01\x02\x03", b"", b"\xaa" * 0x80])
    heap = stream.BlobHeap(None, data)

    assert heap.get_bytes(0) == b""
    assert heap.get_bytes(offsets[0]) == b"\x01\x02\x03"
    assert heap.get_bytes(offsets[1]) == b""
    assert heap.get_bytes(offsets[2]) == b"\xaa" * 0x80

    # two byte length prefix
    value, size = heap.get_with_size(offsets[2])
    assert size == 0x82

    assert heap.get(offsets[0]) == b"\x01\x02\x03"
    assert [i for i, _ in heap.items()] == [0] + offsets


def test_blobs_empty_heap():
    heap = stream.BlobHeap(None, b"")
    assert heap.get_bytes(0) == b""


def test_blobs_without_leading_empty_entry():
    heap = stream.BlobHeap(None, b"\x02ab\x01c")
    assert heap.get_bytes(0) == b""
    assert heap.get_bytes(3) == b"c"
    assert [(i, item.value_bytes()) for i, item in heap.items()] == [(0, b"ab"), (3, b"c")]

    us = stream.UserStringHeap(None, b"\x03A\x00\x00")
    assert us.get_str(0) == ""


def test_blobs_invalid():
    # length runs past the end of the heap
    heap = stream.BlobHeap(None, b"\x00\x05\x01\x02")
    with pytest.raises(MalformedHeap):
        heap.get(1)

    # a lone two-byte length prefix
    heap = stream.BlobHeap(None, b"\x00\x80")
    with pytest.raises(MalformedHeap):
        heap.get(1)

    # invalid leading byte
    heap = stream.BlobHeap(None, b"\x00\xe0\x00\x00\x00")
    with pytest.raises(MalformedHeap):
        heap.get(1)

    # out of range
    with pytest.raises(MalformedHeap):
        heap.get(10)
