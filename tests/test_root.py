# -*- coding: utf-8 -*-
import struct
import logging

import pytest
import fixtures

import dnmeta
from dnmeta import stream
from dnmeta.errors import InvalidSignature, TruncatedInput, MalformedMetadata


def test_root():
    data = fixtures.hello_metadata()

    root = dnmeta.parse_root(data)
    assert root.signature == 0x424A5342
    assert root.major_version == 1
    assert root.minor_version == 1
    assert root.reserved == 0
    assert root.flags == 0
    assert root.version == "v4.0.30319"
    assert [s.name for s in root.streams] == ["#~", "#Strings", "#US", "#GUID", "#Blob"]

    # v4.0.30319 plus terminator, padded to 12 bytes
    assert root.struct.VersionLength == 12
    assert root.streams[0].sizeof() == 12
    assert root.streams[1].sizeof() == 8 + 12


def test_stream_offsets():
    h = fixtures.Hello()
    data = h.build()

    root = dnmeta.parse_root(data)
    for header, (_, content) in zip(root.streams, h.streams):
        assert header.size == len(content)
        assert data[header.offset:header.offset + header.size] == content


def test_invalid_signature():
    data = bytearray(fixtures.hello_metadata())
    data[0:4] = b"BSJA"

    with pytest.raises(InvalidSignature):
        dnmeta.parse(bytes(data))


def test_empty_input():
    with pytest.raises(TruncatedInput):
        dnmeta.parse(b"")

    with pytest.raises(TruncatedInput):
        dnmeta.parse(b"BSJB")


def test_truncated_stream_directory():
    data = fixtures.hello_metadata()
    root = dnmeta.parse_root(data)

    with pytest.raises(TruncatedInput):
        dnmeta.parse_root(data[:root.size - 1])


def test_version_length_past_end():
    data = struct.pack("<IHHII", fixtures.SIGNATURE, 1, 1, 0, 0x1000) + b"v4.0"

    with pytest.raises(TruncatedInput):
        dnmeta.parse_root(data)


def test_invalid_version_encoding():
    data = bytearray(fixtures.hello_metadata())
    # first byte of the version string
    data[16] = 0xFF

    with pytest.raises(MalformedMetadata):
        dnmeta.parse_root(bytes(data))


def test_stream_past_end():
    data = bytearray(fixtures.hello_metadata())
    root = dnmeta.parse_root(bytes(data))
    # size of the first stream
    pos = root.struct.sizeof() + 4
    data[pos:pos + 4] = struct.pack("<I", len(data))

    with pytest.raises(TruncatedInput):
        dnmeta.parse_root(bytes(data))


def test_duplicate_stream(caplog):
    us, _ = fixtures.us_heap(["BBBBBBBB"])
    data = fixtures.hello_metadata(extra_streams=[("#US", us)])

    with caplog.at_level(logging.WARNING):
        md = dnmeta.parse(data)

    assert "Duplicate .NET stream name" in caplog.text
    assert len(md.streams_list) == 6
    # dotnet uses the last stream of a given name
    assert md.user_string(1) == "BBBBBBBB"


def test_unknown_stream():
    data = fixtures.hello_metadata(extra_streams=[("#ZZ", b"\x01\x02\x03\x04")])

    md = dnmeta.parse(data)
    assert "#ZZ" in md.streams
    assert isinstance(md.streams["#ZZ"], stream.GenericStream)
    assert md.streams["#ZZ"].get_data_at_offset(1, 2) == b"\x02\x03"


def test_invalid_stream_name():
    data = fixtures.hello_metadata(extra_streams=[("#QQ", b"")])
    # the name bytes are not valid utf-8
    data = data.replace(b"#QQ\x00", b"#\x90\x90\x00")

    md = dnmeta.parse(data)
    assert "#\\x90\\x90" in md.streams
    assert md.root.streams[-1].struct.Name == b"#\x90\x90"


def test_missing_tables_stream():
    h = fixtures.Hello()
    data = fixtures.metadata_root([s for s in h.streams if s[0] != "#~"])

    with pytest.raises(MalformedMetadata):
        dnmeta.parse(data)


def test_uncompressed_tables_stream():
    h = fixtures.Hello()
    data = fixtures.metadata_root([("#-" if name == "#~" else name, content) for name, content in h.streams])

    md = dnmeta.parse(data)
    assert md.assembly().name == "Test"


def _uncompressed(h):
    return fixtures.metadata_root([("#-" if name == "#~" else name, content) for name, content in h.streams])


def test_method_ptr_indirection():
    md = dnmeta.parse(_uncompressed(fixtures.Hello(method_ptrs=[2, 1])))

    program = md.types()[1]
    assert [m.name for m in program.methods()] == ["Run", "Main"]


def test_method_ptr_out_of_range():
    md = dnmeta.parse(_uncompressed(fixtures.Hello(method_ptrs=[1, 9])))

    program = md.types()[1]
    with pytest.raises(MalformedMetadata, match="MethodPtr"):
        program.methods()


def test_missing_heaps():
    h = fixtures.Hello()
    data = fixtures.metadata_root([s for s in h.streams if s[0] in ("#~", "#Strings")])

    md = dnmeta.parse(data)
    assert md.user_strings.sizeof() == 0
    assert md.guids.get(0) is None
    assert md.blobs.get_bytes(0) == b""
    assert md.assembly().name == "Test"
    # the Module row still refers to GUID 1
    assert any("invalid GUID index 1" in p for p in md.validate())
