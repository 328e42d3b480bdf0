# -*- coding: utf-8 -*-
"""
dnmeta, .NET (ECMA-335) CLI metadata parser

Decodes the metadata root that starts with the BSJB signature: the stream
directory, the #Strings, #US, #GUID and #Blob heaps, and the #~ (or #-)
table stream.  Locating the metadata inside a PE file is left to the caller.


REFERENCES

    https://www.ntcore.com/files/dotnetformat.htm
    https://referencesource.microsoft.com/System.AddIn/System/Addin/MiniReflection/MetadataReader/Metadata.cs.html
    https://asmresolver.readthedocs.io/en/latest/peimage/dotnet.html#metadata-streams
    ECMA-335 6th Edition, June 2012, Partition II


Copyright (c) 2020-2024 MalwareFrank
"""

__author__ = """MalwareFrank"""
__version__ = "0.1.0"

import struct as _struct
import logging
from typing import Dict, List, Type, Union, Optional

from pefile import Dump, Structure

from . import base, enums, utils, views, errors, stream, mdtable

logger = logging.getLogger(__name__)
CLR_METADATA_SIGNATURE = 0x424A5342


class MetadataRootStruct(Structure):
    Signature: int
    MajorVersion: int
    MinorVersion: int
    Reserved: int
    VersionLength: int
    Version: bytes
    Flags: int
    NumberOfStreams: int


class MetadataRoot(object):
    """Holds the CLR (.NET) metadata root.

    struct:         IMAGE_CLR_METADATA structure
    version:        runtime version string, e.g. "v4.0.30319"
    streams:        stream headers, in directory order
    size:           bytes used by the root and its stream directory
    """

    #### MetaData root
    #
    # dd    Signature
    # dw    MajorVersion
    # dw    MinorVersion
    # dd    Reserved
    # dd    Length
    # var   Version
    # dw    Flags
    # dw    NumberOfStreams
    # var   StreamHeaders
    _format = (
        "IMAGE_CLR_METADATA",
        (
            "I,Signature",
            "H,MajorVersion",
            "H,MinorVersion",
            "I,Reserved",
            "I,VersionLength",
            # '?,Version',
            # 'H,Flags',
            # 'H,NumberOfStreams',
        ),
    )

    def __init__(self, struct: MetadataRootStruct, version: str, streams: List[base.StreamHeader], size: int):
        self.struct = struct
        self.version = version
        self.streams = streams
        self.size = size

    @property
    def signature(self) -> int:
        return self.struct.Signature

    @property
    def major_version(self) -> int:
        return self.struct.MajorVersion

    @property
    def minor_version(self) -> int:
        return self.struct.MinorVersion

    @property
    def reserved(self) -> int:
        return self.struct.Reserved

    @property
    def flags(self) -> int:
        return self.struct.Flags

    def __eq__(self, other):
        if not isinstance(other, MetadataRoot):
            return False
        return (
            self.struct.__pack__() == other.struct.__pack__()
            and self.version == other.version
            and self.streams == other.streams
        )


def _parse_stream_header(buf: bytes, offset: int) -> base.StreamHeader:
    # name is NUL terminated and padded to the next 4-byte boundary
    name_start = offset + 8
    if len(buf) < name_start:
        raise errors.TruncatedInput("stream header at 0x{:x} is truncated".format(offset), offset=offset, needed=8)
    end = buf.find(b"\x00", name_start)
    if end == -1:
        raise errors.TruncatedInput(
            "stream name at 0x{:x} has no terminator".format(name_start), offset=name_start, needed=1
        )
    name_len = utils.align4(end - name_start + 1)

    stream_struct = base.StreamStruct(
        ("IMAGE_CLR_STREAM", ("I,Offset", "I,Size", "{0}s,Name".format(name_len))),
        file_offset=offset,
    )
    base.unpack_struct(stream_struct, buf, offset)
    # remove trailing NULLs from name
    stream_struct.Name = stream_struct.Name.rstrip(b"\x00")
    name = stream_struct.Name.decode("utf-8", "backslashreplace")

    if stream_struct.Offset + stream_struct.Size > len(buf):
        raise errors.TruncatedInput(
            "stream {!r} (offset 0x{:x}, size 0x{:x}) runs past the metadata (0x{:x} bytes)".format(
                name, stream_struct.Offset, stream_struct.Size, len(buf)
            ),
            offset=stream_struct.Offset,
            needed=stream_struct.Size,
        )

    return base.StreamHeader(stream_struct, name)


def parse_root(buf: bytes) -> MetadataRoot:
    """
    Decode the metadata root and its stream directory from the start of `buf`.

    Raises InvalidSignature, TruncatedInput or MalformedMetadata.
    """
    if len(buf) < 4:
        raise errors.TruncatedInput("no room for the metadata signature", offset=0, needed=4)
    # check signature
    sig = _struct.unpack_from("<I", buf)[0]
    if sig != CLR_METADATA_SIGNATURE:
        raise errors.InvalidSignature(
            "Invalid CLR MetaData Signature. Expected 0x%x but got 0x%x" % (CLR_METADATA_SIGNATURE, sig)
        )

    # parse struct so that we can get the version length
    root_struct = MetadataRootStruct(format=MetadataRoot._format, file_offset=0)
    base.unpack_struct(root_struct, buf)
    fixed_size = root_struct.sizeof()

    version_len = utils.align4(root_struct.VersionLength)
    if fixed_size + version_len + 4 > len(buf):
        raise errors.TruncatedInput(
            "version string of 0x{:x} bytes runs past the metadata".format(root_struct.VersionLength),
            offset=fixed_size,
            needed=version_len + 4,
        )

    # add variable-length version field, then Flags and NumberOfStreams
    fields = list(MetadataRoot._format[1])
    if version_len > 0:
        fields.append("{0}s,Version".format(version_len))
    fields.append("H,Flags")
    fields.append("H,NumberOfStreams")

    # re-parse metadata header structure
    root_struct = MetadataRootStruct(format=(MetadataRoot._format[0], tuple(fields)), file_offset=0)
    base.unpack_struct(root_struct, buf)

    raw_version = getattr(root_struct, "Version", b"")
    raw_version = raw_version.split(b"\x00", 1)[0]
    try:
        version = raw_version.decode("utf-8")
    except UnicodeDecodeError as e:
        raise errors.MalformedMetadata("invalid metadata version string: {!r}".format(raw_version)) from e

    if root_struct.Reserved != 0:
        logger.warning("metadata root reserved field is not zero: 0x%x", root_struct.Reserved)

    streams: List[base.StreamHeader] = []
    # pointer to current stream's directory entry
    pos = root_struct.sizeof()
    for i in range(root_struct.NumberOfStreams):
        header = _parse_stream_header(buf, pos)
        logger.debug("stream %d: %s offset: 0x%x size: 0x%x", i, header.name, header.offset, header.size)
        streams.append(header)
        pos += header.sizeof()

    return MetadataRoot(root_struct, version, streams, pos)


class ClrStreamFactory(object):
    _name_type_map: Dict[str, Type[base.ClrStream]] = {
        "#~": stream.MetaDataTables,
        "#-": stream.MetaDataTables,
        "#Strings": stream.StringsHeap,
        "#GUID": stream.GuidHeap,
        "#Blob": stream.BlobHeap,
        "#US": stream.UserStringHeap,
    }

    @classmethod
    def createStream(cls, header: base.StreamHeader, buf: bytes) -> base.ClrStream:
        stream_data = buf[header.offset:header.offset + header.size]
        # use GenericStream for any non-standard streams
        stream_class = cls._name_type_map.get(header.name, stream.GenericStream)
        return stream_class(header, stream_data)


# list tables may be reached through a Ptr table in uncompressed (#-) metadata
_PTR_TABLES = {
    enums.MetadataTables.Field: (enums.MetadataTables.FieldPtr, "Field"),
    enums.MetadataTables.MethodDef: (enums.MetadataTables.MethodPtr, "Method"),
    enums.MetadataTables.Param: (enums.MetadataTables.ParamPtr, "Param"),
    enums.MetadataTables.Event: (enums.MetadataTables.EventPtr, "Event"),
    enums.MetadataTables.Property: (enums.MetadataTables.PropertyPtr, "Property"),
}


class Metadata(object):
    """Holds decoded CLR (.NET) metadata.

    root:           MetadataRoot
    streams:        dict of streams by name; the last stream of a name wins
    streams_list:   list of streams, in directory order
    strings:        #Strings heap
    user_strings:   #US heap
    guids:          #GUID heap
    blobs:          #Blob heap
    mdtables:       the #~ (or #-) stream, tables available by name, e.g. `mdtables.TypeDef`

    Absent heaps are empty.  The input is copied once and never modified.
    """

    def __init__(self, data: bytes):
        self.__data__: bytes = bytes(data)
        self.root: MetadataRoot = parse_root(self.__data__)

        streams_dict: Dict[str, base.ClrStream] = dict()
        streams_list: List[base.ClrStream] = list()
        for header in self.root.streams:
            s = ClrStreamFactory.createStream(header, self.__data__)
            streams_list.append(s)
            if header.name in streams_dict:
                # if a stream with this name already exists.
                # this is not fatal, just unusual.
                logger.warning("Duplicate .NET stream name: %s", header.name)
            # dotnet uses the last encountered stream with a given name,
            # see: https://github.com/malwarefrank/dnfile/issues/19#issuecomment-992754448
            streams_dict[header.name] = s
        self.streams = streams_dict
        self.streams_list = streams_list

        self.strings: stream.StringsHeap = self._heap("#Strings", stream.StringsHeap)
        self.user_strings: stream.UserStringHeap = self._heap("#US", stream.UserStringHeap)
        self.guids: stream.GuidHeap = self._heap("#GUID", stream.GuidHeap)
        self.blobs: stream.BlobHeap = self._heap("#Blob", stream.BlobHeap)

        tables = self.streams.get("#~") or self.streams.get("#-")
        if not isinstance(tables, stream.MetaDataTables):
            raise errors.MalformedMetadata("no #~ or #- metadata tables stream")
        tables.parse()
        self.mdtables: stream.MetaDataTables = tables

    def _heap(self, name, heap_class):
        s = self.streams.get(name)
        if s is None:
            logger.debug("no %s heap, using an empty heap", name)
            return heap_class(None, b"")
        return s

    @property
    def tables(self) -> Dict[int, base.ClrMetaDataTable]:
        """present tables, by table number"""
        return self.mdtables.tables

    def get_table(self, key: Union[str, int]) -> Optional[base.ClrMetaDataTable]:
        """Fetch a present table by name or number, or None."""
        return self.mdtables.get_table(key)

    def row_count(self, table: Union[str, int]) -> int:
        t = self.get_table(table)
        if t is None:
            return 0
        return t.num_rows

    def _rows(self, table: enums.MetadataTables) -> List[base.MDTableRow]:
        t = self.get_table(table)
        if t is None:
            return []
        return t.rows

    def row_run(self, row: base.MDTableRow, column_name: str) -> List[int]:
        """
        The 1-based row indexes referenced by list column `column_name` of `row`,
        e.g. the MethodDef rows of a TypeDef's MethodList.

        The run goes from this row's value to the next row's value minus one,
        or to the end of the target table for the last row.
        """
        column = next(c for c in mdtable.TABLE_SCHEMAS[row.table] if c.name == column_name)
        assert isinstance(column, base.TableIndexColumn) and column.is_list

        ptr = _PTR_TABLES.get(column.table)
        ptr_table = self.get_table(ptr[0]) if ptr else None
        if ptr_table is not None:
            max_row = ptr_table.num_rows
        else:
            max_row = self.row_count(column.table)

        owner = self.get_table(row.table)
        run_start_index = row.raw_value(column_name)
        if owner is not None and row.rid < owner.num_rows:
            next_row = owner.get_with_row_index(row.rid + 1)
            # row end index is inclusive so row end index must equal next row index minus 1, if less than max row
            run_end_index = min(next_row.raw_value(column_name) - 1, max_row)
        else:
            run_end_index = max_row

        if run_start_index < 1:
            return []

        run = list(range(run_start_index, run_end_index + 1))
        if ptr_table is not None:
            run = [ptr_table.get_with_row_index(i).raw_value(ptr[1]) for i in run]
            target_rows = self.row_count(column.table)
            for ptr_rid, target in zip(range(run_start_index, run_end_index + 1), run):
                if target < 1 or target > target_rows:
                    raise errors.MalformedMetadata(
                        "{}[{}]: row index {} out of range ({} rows)".format(
                            ptr_table.name, ptr_rid, target, target_rows
                        )
                    )
        return run

    #### queries

    def version(self) -> str:
        """The runtime version string of the metadata root."""
        return self.root.version

    def assembly(self) -> Optional[views.AssemblyInfo]:
        rows = self._rows(enums.MetadataTables.Assembly)
        if not rows:
            return None
        if len(rows) > 1:
            raise errors.MalformedMetadata("Assembly table has {} rows, at most 1 allowed".format(len(rows)))
        return views.AssemblyInfo(self, rows[0])

    def module(self) -> Optional[views.ModuleInfo]:
        rows = self._rows(enums.MetadataTables.Module)
        if not rows:
            return None
        return views.ModuleInfo(self, rows[0])

    def types(self) -> views.RowSequence:
        return views.RowSequence(self._rows(enums.MetadataTables.TypeDef), lambda r: views.TypeDefView(self, r))

    def type_refs(self) -> views.RowSequence:
        return views.RowSequence(self._rows(enums.MetadataTables.TypeRef), lambda r: views.TypeRefView(self, r))

    def methods(self) -> views.RowSequence:
        return views.RowSequence(self._rows(enums.MetadataTables.MethodDef), lambda r: views.MethodView(self, r))

    def fields(self) -> views.RowSequence:
        return views.RowSequence(self._rows(enums.MetadataTables.Field), lambda r: views.FieldView(self, r))

    def assembly_refs(self) -> views.RowSequence:
        return views.RowSequence(
            self._rows(enums.MetadataTables.AssemblyRef), lambda r: views.AssemblyRefInfo(self, r)
        )

    def user_string(self, index: int) -> str:
        """
        The #US string at `index`.  An ldstr token is 0x70000000 | index.
        """
        return self.user_strings.get_str(index & 0x00FFFFFF)

    #### validation

    def validate(self) -> List[str]:
        """
        Check cross references that decoding alone does not.
        Returns a list of problems, empty when the metadata is consistent.
        """
        problems: List[str] = []

        if self.row_count(enums.MetadataTables.Module) < 1:
            problems.append("Module table must have at least 1 row")

        heaps = {
            enums.HeapSizes.STRINGS: ("string", self.strings),
            enums.HeapSizes.GUIDS: ("GUID", self.guids),
            enums.HeapSizes.BLOBS: ("blob", self.blobs),
        }

        for table in self.mdtables.tables_list:
            for row in table:
                for column in table.layout.columns:
                    value = row.raw_value(column.name)
                    where = "{}[{}].{}".format(table.name, row.rid, column.name)

                    if isinstance(column, base.HeapIndexColumn):
                        if value == 0:
                            continue
                        kind, heap = heaps[column.heap]
                        try:
                            heap.get(value)
                        except errors.MalformedHeap:
                            problems.append("{}: invalid {} index {}".format(where, kind, value))

                    elif isinstance(column, base.TableIndexColumn):
                        max_rows = self.row_count(column.table)
                        # a list may start one past the end of its target, meaning empty
                        limit = max_rows + 1 if column.is_list else max_rows
                        if value > limit:
                            problems.append("{}: invalid table index {} (max {})".format(where, value, max_rows))

                    elif isinstance(column, base.CodedIndexColumn):
                        ref = getattr(row, column.name)
                        if ref is not None and ref.row_index > self.row_count(ref.table):
                            problems.append("{}: invalid {} index {} (max {})".format(
                                where, ref.table.name, ref.row_index, self.row_count(ref.table)
                            ))

        return problems

    def validate_strict(self):
        """Raise MalformedMetadata with the first problem found by validate()."""
        problems = self.validate()
        if problems:
            raise errors.MalformedMetadata(problems[0])

    #### dump

    def dump_info(self, dump=None, encoding="utf-8"):
        """
        Dump the metadata root, stream and table header information into human readable string.
        """
        if dump is None:
            dump = Dump()

        dump.add_header("CLR (.NET) Metadata")
        dump.add_lines(self.root.struct.dump())
        dump.add_line("{0:<20}{1}".format("Version:", self.root.version))
        dump.add_newline()

        # Streams
        for header in self.root.streams:
            dump.add_lines(header.struct.dump(), indent=4)
            dump.add_newline()

        # Metadata Tables
        dump.add_header("CLR (.NET) Metadata Tables")
        dump.add_lines(self.mdtables.header.struct.dump())
        dump.add_newline()
        for t in self.mdtables.tables_list:
            for label, value in (
                ("Offset", hex(t.offset)),
                ("TableName", t.name),
                ("TableNumber", int(t.number)),
                ("IsSorted", t.is_sorted),
                ("NumRows", t.num_rows),
                ("RowSize", t.row_size),
            ):
                dump.add_line(
                    "{0:<20}{1}".format(label + ":", str(value)),
                    indent=2,
                )
            dump.add_newline()

        return dump.get_text()

    def __eq__(self, other):
        if not isinstance(other, Metadata):
            return False
        return (
            self.root == other.root
            and self.strings == other.strings
            and self.user_strings == other.user_strings
            and self.guids == other.guids
            and self.blobs == other.blobs
            and self.mdtables == other.mdtables
        )


def parse(data: bytes, validate: bool = False) -> Metadata:
    """
    Decode the metadata blob `data`, which starts with the BSJB signature.

    With validate=True, also run Metadata.validate_strict().
    Raises a dnmeta.errors.dnFormatError subclass on any problem.
    """
    md = Metadata(data)
    if validate:
        md.validate_strict()
    return md
