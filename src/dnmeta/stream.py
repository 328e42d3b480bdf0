# -*- coding: utf-8 -*-
"""
.NET Streams

REFERENCES

    https://www.ntcore.com/files/dotnetformat.htm
    https://referencesource.microsoft.com/System.AddIn/System/Addin/MiniReflection/MetadataReader/Metadata.cs.html#123
    ECMA-335 6th Edition, June 2012, Section II.24.2 Streams

Copyright (c) 2020-2024 MalwareFrank
"""

import uuid as _uuid
import struct as _struct
import logging
from typing import Dict, List, Tuple, Union, Iterator, Optional, overload
from binascii import hexlify as _hexlify
from collections.abc import Sequence

from pefile import MAX_STRING_LENGTH, Structure

from . import base, enums, errors, mdtable

logger = logging.getLogger(__name__)


class GenericStream(base.ClrStream):
    """
    A generic CLR Stream of unknown type.
    """
    pass


class HeapItemString(base.HeapItem):
    """
    A HeapItemString is a HeapItem with an encoding.  The .value member
    is the decoded string.

    A HeapItemString can be compared directly to a str.
    """
    encoding: str

    def __init__(self, data: bytes, offset: Optional[int] = None, encoding="utf-8"):
        super().__init__(data, offset=offset)
        self.encoding = encoding
        # raises UnicodeDecodeError
        self.value: str = self.__data__.decode(encoding)

    def __str__(self) -> str:
        return self.value

    def __eq__(self, other):
        if isinstance(other, str):
            return self.value == other
        return super().__eq__(other)

    def __hash__(self):
        return hash(self.value)

    def __repr__(self):
        return "HeapItemString({!r}, offset={})".format(self.value, self.offset)


class HeapItemBinary(base.HeapItem):
    """
    A HeapItemBinary is a HeapItem with an item_size.  The .item_size
    is the parsed compressed integer at the offset in the binary heap.
    The .value is the bytes following the compressed integer.

    A HeapItemBinary can be compared directly to a bytes object.

    Raises TruncatedInput when the length prefix or the value runs past `data`.
    """
    item_size: base.CompressedInt

    def __init__(self, data: bytes, offset: Optional[int] = None):
        # read compressed int, which has a max size of four bytes
        self.item_size = base.CompressedInt.read(data[:4], offset)
        end = self.item_size.raw_size + self.item_size
        if end > len(data):
            raise errors.TruncatedInput(
                "blob of 0x{:x} bytes runs past the end of the heap".format(int(self.item_size)),
                offset=offset,
                needed=end,
            )
        base.HeapItem.__init__(self, data[:end], offset)

        self.value = self.__data__[self.item_size.raw_size:]

    def value_bytes(self):
        return self.__data__[self.item_size.raw_size:]

    def __eq__(self, other):
        if isinstance(other, base.HeapItem):
            return base.HeapItem.__eq__(self, other)
        if isinstance(other, bytes):
            return self.value == other
        return False

    def __hash__(self):
        return hash(self.value_bytes())

    def __repr__(self):
        return "HeapItemBinary({!r}, offset={})".format(self.value, self.offset)


class UserString(HeapItemBinary):
    """
    The #US or UserStrings stream should contain UTF-16 strings.
    Each entry in the stream includes a byte indicating whether
    any Unicode characters require handling beyond that normally
    provided for 8-bit encoding sets.

    Reference ECMA-335, Partition II Section 24.2.4
    """

    flag: Optional[int] = None

    def __init__(self, data: bytes, offset: Optional[int] = None, encoding="utf-16-le"):
        super().__init__(data, offset=offset)
        self.encoding = encoding

        buf = self.__data__[self.item_size.raw_size:]
        if self.item_size % 2 == 1:
            # > This final byte holds the value 1 if and only if any UTF16
            # > character within the string has any bit set in its top byte,
            # > or its low byte is any of the following:
            # > 0x01–0x08, 0x0E–0x1F, 0x27, 0x2D, 0x7F.
            # > Otherwise, it holds 0.
            #
            # via ECMA-335 6th edition, II.24.2.4
            #
            # Trim this trailing flag, which is not part of the string.
            self.flag = buf[-1]
            str_buf = buf[:-1]
            if self.flag not in (0x00, 0x01):
                logger.warning("unexpected string flag value: 0x%02x", self.flag)
        elif self.item_size == 0:
            str_buf = buf
        else:
            logger.warning("string missing trailing flag (offset: %s)", self.offset)
            str_buf = buf

        # unpaired surrogates are kept, as written by the compiler
        self.value = str_buf.decode(encoding, errors="surrogatepass")

    def value_bytes(self):
        if self.flag is None:
            return self.__data__[self.item_size.raw_size:]
        return self.__data__[self.item_size.raw_size:-1]

    def __str__(self) -> str:
        return self.value

    def __eq__(self, other):
        if isinstance(other, str):
            return self.value == other
        return super().__eq__(other)

    def __hash__(self):
        return hash(self.value)

    def __repr__(self):
        return "UserString({!r}, flag={}, offset={})".format(self.value, self.flag, self.offset)


class StringsHeap(base.ClrHeap):
    """The #Strings heap: NUL terminated UTF-8 strings addressed by byte offset."""

    def get_str(self, index, max_length=MAX_STRING_LENGTH, encoding="utf-8", as_bytes=False):
        """
        Given an index (offset), read a null-terminated UTF-8 (or given encoding) string.
        Returns a str, or bytes if as_bytes is True.
        """
        item = self.get(index, max_length, encoding)

        if as_bytes:
            return item.value_bytes()

        return item.value

    def get(self, index, max_length=MAX_STRING_LENGTH, encoding="utf-8") -> HeapItemString:
        """
        Given an index (offset), read a null-terminated UTF-8 (or given encoding) string.

        Index 0 is the empty string, whatever the heap holds at offset 0.
        Raises MalformedHeap for an index out of range, a missing terminator,
        a string longer than max_length, or an invalid encoding.
        """
        if index == 0:
            return HeapItemString(b"", offset=self.offset, encoding=encoding)
        return self._read(index, max_length, encoding)

    def _read(self, index, max_length=MAX_STRING_LENGTH, encoding="utf-8") -> HeapItemString:
        if index < 0 or index >= len(self.__data__):
            raise errors.MalformedHeap(
                "#Strings index 0x{:x} out of range (heap size 0x{:x})".format(index, len(self.__data__))
            )

        end = self.__data__.find(b"\x00", index)
        if end == -1:
            raise errors.MalformedHeap("#Strings: no terminator for string at 0x{:x}".format(index))

        if end - index > max_length:
            raise errors.MalformedHeap(
                "#Strings: string at 0x{:x} is longer than 0x{:x} bytes".format(index, max_length)
            )

        try:
            return HeapItemString(self.__data__[index:end], offset=self.offset + index, encoding=encoding)
        except UnicodeDecodeError as e:
            raise errors.MalformedHeap("#Strings: invalid {} at 0x{:x}: {}".format(encoding, index, e)) from e

    def items(self) -> Iterator[Tuple[int, str]]:
        """
        Yield (index, string) for each string in the heap, in order.
        """
        index = 0
        while index < len(self.__data__):
            item = self._read(index)
            yield index, item.value
            index += item.raw_size + 1


class BinaryHeap(base.ClrHeap):
    """A heap of length prefixed entries: #Blob and #US."""

    item_class = HeapItemBinary
    heap_name = "#Blob"

    def get_bytes(self, index: int) -> bytes:
        return self.get(index).value_bytes()

    def get_with_size(self, index: int) -> Tuple[bytes, int]:
        item = self.get(index)
        return item.value_bytes(), item.raw_size

    def get(self, index: int):
        """
        Index 0 is an empty entry, whatever the heap holds at offset 0.
        Raises MalformedHeap for an index out of range or a bad length prefix.
        """
        if index == 0:
            return self.item_class(b"\x00", offset=self.offset)
        return self._read(index)

    def _read(self, index: int):
        if index < 0 or index >= len(self.__data__):
            raise errors.MalformedHeap(
                "{} index 0x{:x} out of range (heap size 0x{:x})".format(self.heap_name, index, len(self.__data__))
            )

        try:
            return self.item_class(self.__data__[index:], offset=self.offset + index)
        except errors.TruncatedInput as e:
            # possible invalid compressed int length, or a length past the end of the heap.
            raise errors.MalformedHeap("{} entry at 0x{:x}: {}".format(self.heap_name, index, e)) from e

    def items(self) -> Iterator[Tuple[int, base.HeapItem]]:
        """
        Yield (index, item) for each entry in the heap, in order.
        """
        index = 0
        while index < len(self.__data__):
            item = self._read(index)
            yield index, item
            index += item.raw_size


class BlobHeap(BinaryHeap):
    pass


class UserStringHeap(BinaryHeap):
    item_class = UserString
    heap_name = "#US"

    def get_str(self, index: int) -> str:
        return self.get(index).value


class HeapItemGuid(base.HeapItem):

    ITEM_SIZE = 128 // 8  # number of bytes in a guid

    @property
    def value(self):
        return self.__data__

    @property
    def uuid(self) -> _uuid.UUID:
        return _uuid.UUID(bytes_le=self.__data__)

    def __str__(self):
        data = self.__data__
        parts = _struct.unpack_from("<IHH", data)
        part3 = _hexlify(data[8:10]).decode("ascii")
        part4 = _hexlify(data[10:16]).decode("ascii")
        return f"{parts[0]:08x}-{parts[1]:04x}-{parts[2]:04x}-{part3}-{part4}"

    def __repr__(self):
        return f"HeapItemGuid({self},offset={self.offset})"


class GuidHeap(base.ClrHeap, Sequence):
    """
    The #GUID heap: 16 byte records addressed by 1-based index.
    Index 0 is the null GUID.
    """

    def get_str(self, index, as_bytes=False):
        item = self.get(index)

        if item is None:
            return None

        if as_bytes:
            return item.value_bytes()

        return str(item)

    def get(self, index: int) -> Optional[HeapItemGuid]:
        if not isinstance(index, int):
            raise TypeError(f"unexpected type: {type(index)}")

        if index == 0:
            return None

        # 1-based indexing
        if index < 0 or index > len(self):
            raise errors.MalformedHeap("#GUID index {} out of range ({} entries)".format(index, len(self)))

        # offset into the GUID stream
        offset = (index - 1) * HeapItemGuid.ITEM_SIZE

        return HeapItemGuid(self.__data__[offset:offset + HeapItemGuid.ITEM_SIZE], self.offset + offset)

    def __len__(self) -> int:
        return len(self.__data__) // HeapItemGuid.ITEM_SIZE

    @overload
    def __getitem__(self, i: int) -> HeapItemGuid:
        ...

    @overload
    def __getitem__(self, i: slice) -> List[HeapItemGuid]:
        ...

    def __getitem__(self, i):
        if isinstance(i, int):
            if i < 0:
                # convert negative index into positive
                index0 = len(self) + i
            else:
                index0 = i
            if index0 < 0 or index0 >= len(self):
                raise IndexError(f"unexpected index: {i}")
            return self.get(index0 + 1)
        elif isinstance(i, slice):
            start, stop, step = i.indices(len(self))
            return [self[index] for index in range(start, stop, step)]
        raise TypeError(f"unexpected type '{type(i)}'")


class MDTablesStruct(Structure):
    Reserved_1: int
    MajorVersion: int
    MinorVersion: int
    HeapOffsetSizes: int
    Reserved_2: int
    MaskValid: int
    MaskSorted: int


class TableStreamHeader(object):
    """
    The header of the #~ (or #-) stream.

    struct:         IMAGE_CLR_METADATA_TABLES structure
    rows_struct:    the row counts, one dword per present table
    row_counts:     64 row counts indexed by table number, 0 for absent tables
    header_size:    bytes used by the header, row counts and any extra dword
    """

    _format = (
        "IMAGE_CLR_METADATA_TABLES",
        (
            "I,Reserved_1",
            "B,MajorVersion",
            "B,MinorVersion",
            "B,HeapOffsetSizes",
            "B,Reserved_2",
            "Q,MaskValid",
            "Q,MaskSorted",
        ),
    )

    def __init__(self, struct: MDTablesStruct, rows_struct: Structure, row_counts: List[int], header_size: int):
        self.struct = struct
        self.rows_struct = rows_struct
        self.row_counts = row_counts
        self.header_size = header_size

    @property
    def reserved(self) -> int:
        return self.struct.Reserved_1

    @property
    def major_version(self) -> int:
        return self.struct.MajorVersion

    @property
    def minor_version(self) -> int:
        return self.struct.MinorVersion

    @property
    def heap_sizes(self) -> enums.HeapSizes:
        return enums.HeapSizes(self.struct.HeapOffsetSizes)

    @property
    def reserved2(self) -> int:
        return self.struct.Reserved_2

    @property
    def valid(self) -> int:
        return self.struct.MaskValid

    @property
    def sorted(self) -> int:
        return self.struct.MaskSorted

    def is_present(self, table: int) -> bool:
        return self.valid & (1 << table) != 0

    def is_sorted(self, table: int) -> bool:
        return self.sorted & (1 << table) != 0

    def present_tables(self) -> List[int]:
        return [i for i in range(mdtable.MAX_TABLES) if self.is_present(i)]

    def __eq__(self, other):
        if not isinstance(other, TableStreamHeader):
            return False
        return (
            self.struct.__pack__() == other.struct.__pack__()
            and self.row_counts == other.row_counts
            and self.header_size == other.header_size
        )


def _row_count_field(table: int) -> str:
    try:
        return "I,Rows_" + enums.MetadataTables(table).name
    except ValueError:
        return "I,Rows_{:02x}".format(table)


def parse_table_header(data: bytes, offset: int = 0) -> Tuple[TableStreamHeader, int]:
    """
    Decode the #~ stream header from the start of `data`.
    Returns the header and the offset of the first table row.

    Raises TruncatedInput when the header or row counts run past `data`.
    """
    header_struct = MDTablesStruct(TableStreamHeader._format, file_offset=offset)
    base.unpack_struct(header_struct, data)
    pos = header_struct.sizeof()

    if header_struct.Reserved_1 != 0:
        logger.warning("metadata tables reserved field is not zero: 0x%x", header_struct.Reserved_1)

    #### Parse tables rows list.
    #  It is a variable length array of dwords.  Each dword is
    #  the number of rows in a table.  They are ordered by table
    #  number, smallest first.  Only the tables needed/defined
    #  are listed, thus the variable length and need to parse
    #  the header's MaskValid member.
    present = [i for i in range(mdtable.MAX_TABLES) if header_struct.MaskValid & (1 << i)]
    rows_struct = Structure(
        ("IMAGE_CLR_METADATA_TABLES_ROWS", tuple(_row_count_field(i) for i in present)),
        file_offset=offset + pos,
    )
    row_counts = [0] * mdtable.MAX_TABLES
    if present:
        base.unpack_struct(rows_struct, data, pos)
        pos += rows_struct.sizeof()
        for i in present:
            row_counts[i] = getattr(rows_struct, _row_count_field(i)[2:])

    # consume an extra dword if the extra data bit is set
    if header_struct.HeapOffsetSizes & enums.HeapSizes.EXTRA_DATA:
        if len(data) < pos + 4:
            raise errors.TruncatedInput("metadata tables: missing extra data dword", offset=pos, needed=4)
        logger.warning("metadata tables: skipping extra data dword")
        pos += 4

    return TableStreamHeader(header_struct, rows_struct, row_counts, pos), pos


class MetaDataTables(base.ClrStream):
    """Holds CLR (.NET) Metadata Tables.

    header:         TableStreamHeader
    tables:         dict of tables where table number is key and value is ClrMetaDataTable object
    tables_list:    list of tables, in processing order

    Each present table is also available as a member by name, e.g. `.TypeDef`;
    absent tables are None.
    """

    header: Optional[TableStreamHeader]
    tables: Dict[int, base.ClrMetaDataTable]
    tables_list: List[base.ClrMetaDataTable]

    def __init__(self, header: Optional[base.StreamHeader], stream_data: bytes):
        super().__init__(header, stream_data)
        self.header = None
        self.tables = dict()
        self.tables_list = list()
        for t in enums.MetadataTables:
            setattr(self, t.name, None)

    def parse(self):
        """
        Decode the header and every present table.
        Raises a dnFormatError subclass on the first problem.
        """
        header, pos = parse_table_header(self.__data__, self.offset)
        self.header = header
        logger.debug(
            "metadata tables v%d.%d heap sizes: 0x%02x valid: 0x%016x",
            header.major_version, header.minor_version, header.struct.HeapOffsetSizes, header.valid,
        )

        layouts = []
        for i in header.present_tables():
            if i not in mdtable.TABLE_SCHEMAS:
                if header.row_counts[i] == 0:
                    logger.warning("metadata table 0x%02x has no schema and no rows, ignoring", i)
                    continue
                raise errors.UnsupportedTable(
                    "metadata table 0x{:02x} has {} rows but no known schema".format(i, header.row_counts[i]), i
                )
            layouts.append(mdtable.compute_layout(i, header.heap_sizes, header.row_counts))

        # rows follow the header, table after table, with no padding.
        for layout in layouts:
            size = layout.row_size * layout.row_count
            rows = mdtable.decode_table(self.__data__[pos:pos + size], layout, offset=self.offset + pos)
            table = base.ClrMetaDataTable(layout, header.is_sorted(layout.table), rows, offset=self.offset + pos)
            self.tables[table.number] = table
            self.tables_list.append(table)
            # set member, to allow reference by name
            setattr(self, table.name, table)
            pos += size

        if pos < len(self.__data__):
            logger.debug("metadata tables: 0x%x trailing bytes", len(self.__data__) - pos)

        assembly = self.tables.get(enums.MetadataTables.Assembly)
        if assembly is not None and assembly.num_rows > 1:
            raise errors.MalformedMetadata("Assembly table has {} rows, at most 1 allowed".format(assembly.num_rows))

    def get_table(self, key: Union[str, int]) -> Optional[base.ClrMetaDataTable]:
        """Fetch a present table by name or number, or None."""
        if isinstance(key, str):
            try:
                key = enums.MetadataTables[key]
            except KeyError:
                return None
        return self.tables.get(key)

    def __eq__(self, other):
        if not isinstance(other, MetaDataTables):
            return False
        return self.header == other.header and self.tables_list == other.tables_list
