# -*- coding: utf-8 -*-
"""
.NET metadata base classes

Copyright (c) 2020-2024 MalwareFrank
"""
import abc
import logging
from typing import Any, Dict, List, Type, Tuple, Union, Optional, Sequence

from pefile import Structure, PEFormatError

from . import enums, errors, utils

logger = logging.getLogger(__name__)


def unpack_struct(struct: Structure, data: bytes, offset: int = 0) -> Structure:
    """
    Unpack `struct` from `data` at `offset`.

    Raises TruncatedInput when fewer than `struct.sizeof()` bytes remain.
    """
    needed = struct.sizeof()
    try:
        struct.__unpack__(data[offset:offset + needed])
    except PEFormatError as e:
        raise errors.TruncatedInput(
            "{}: need 0x{:x} bytes at offset 0x{:x}, have 0x{:x}".format(
                struct.name, needed, offset, max(len(data) - offset, 0)
            ),
            offset=offset,
            needed=needed,
        ) from e
    return struct


class CompressedInt(int):
    raw_size: int
    __data__: bytes
    value: int
    offset: Optional[int] = None

    def to_bytes(self):
        return self.__data__

    @classmethod
    def read(cls, data: bytes, offset: Optional[int] = None) -> "CompressedInt":
        """
        Read a compressed int from the start of `data`.
        `offset` is only recorded, as the position of `data` within the metadata.
        """
        value, size = utils.read_compressed_int(data)
        ci = CompressedInt(value)
        ci.raw_size = size
        ci.value = value
        ci.__data__ = bytes(data[:size])
        ci.offset = offset
        return ci


class StreamStruct(Structure):
    Offset: int
    Size: int
    Name: bytes


class StreamHeader(object):
    """
    One entry of the metadata root's stream directory.

    offset and size are relative to the start of the metadata root.
    """

    def __init__(self, struct: StreamStruct, name: str):
        self.struct: StreamStruct = struct
        self.name: str = name

    @property
    def offset(self) -> int:
        return self.struct.Offset

    @property
    def size(self) -> int:
        return self.struct.Size

    def sizeof(self) -> int:
        """
        Returns the number of bytes occupied by this entry in the stream directory.
        """
        return self.struct.sizeof()

    def __eq__(self, other):
        if not isinstance(other, StreamHeader):
            return False
        return (self.name, self.offset, self.size) == (other.name, other.offset, other.size)

    def __repr__(self):
        return "StreamHeader(name={!r}, offset=0x{:x}, size=0x{:x})".format(self.name, self.offset, self.size)


class ClrStream(abc.ABC):
    """
    A stream of the metadata root.

    `header` is None for a heap that is absent from the stream directory,
    in which case the stream is empty.
    """

    def __init__(self, header: Optional[StreamHeader], stream_data: bytes):
        self.header: Optional[StreamHeader] = header
        self.offset: int = header.offset if header is not None else 0
        self.__data__: bytes = stream_data

    @property
    def name(self) -> Optional[str]:
        if self.header is None:
            return None
        return self.header.name

    def sizeof(self):
        """
        Return the size of this stream, in bytes.
        """
        return len(self.__data__)

    def get_data_at_offset(self, offset, size):
        if size == 0 or offset >= self.sizeof():
            return b""
        return self.__data__[offset:offset + size]

    def __eq__(self, other):
        if not isinstance(other, ClrStream):
            return False
        return type(self) is type(other) and self.name == other.name and self.__data__ == other.__data__


class HeapItem(abc.ABC):
    """
    HeapItem is a base class for items retrieved from any of the
    heap streams, for example #Strings, #US, #GUID, and #Blob.

    It can be used to access the raw underlying data, the offset
    (relative to the metadata root) from which it was retrieved,
    an optional interpreted value, and the bytes representation
    of the value.

    Each heap stream .get() call returns a subclass with these
    and optionally additional members.
    """

    offset: Optional[int] = None
    # original data from the heap
    __data__: bytes
    # interpreted value
    value: Any = None

    def __init__(self, data: bytes, offset: Optional[int] = None):
        self.offset = offset
        self.__data__ = data

    def value_bytes(self):
        """
        Return the raw bytes underlying the interpreted value.

        For the base HeapItem, this is the same as the raw_data.
        """
        return self.__data__

    @property
    def raw_size(self):
        """
        Number of bytes read from the stream, including any header,
        value, and footer.
        """
        return len(self.__data__)

    @property
    def raw_data(self):
        """
        The bytes read from the stream, including any header,
        value, and footer
        """
        return self.__data__

    def __eq__(self, other):
        """
        Two HeapItems are equal if their raw data is the same or their
        interpreted values are the same and not None.

        A HeapItem is equal to a bytes object if the HeapItem's value as bytes
        is equal to the bytes object.
        """
        if isinstance(other, HeapItem):
            return self.raw_data == other.raw_data or (self.value is not None and self.value == other.value)
        elif isinstance(other, bytes):
            return self.value_bytes() == other
        return False

    def __hash__(self):
        return hash(self.value_bytes())


class ClrHeap(ClrStream):
    @abc.abstractmethod
    def get(self, index: int):
        raise NotImplementedError()


class RowStruct(Structure):
    pass


class MDTableIndex(object):
    """
    A reference to a row of a Metadata Table.

    Attributes:
        table           Table number, an enums.MetadataTables.
        row_index       1-based index number of the row (the RID).
    """

    def __init__(self, table: Union[enums.MetadataTables, int], row_index: int):
        self.table: enums.MetadataTables = enums.MetadataTables(table)
        self.row_index: int = row_index

    @property
    def table_name(self) -> str:
        return self.table.name

    @property
    def token(self) -> int:
        """The metadata token, table number in the top byte and RID below."""
        return (self.table.value << 24) | self.row_index

    def __eq__(self, other):
        if not isinstance(other, MDTableIndex):
            return False
        return self.table == other.table and self.row_index == other.row_index

    def __hash__(self):
        return hash((self.table, self.row_index))

    def __repr__(self):
        return "{}({}, {})".format(self.__class__.__name__, self.table.name, self.row_index)


class CodedIndex(MDTableIndex):
    """
    A coded index: the low `tag_bits` bits of the raw value select one of
    `table_numbers`, the remaining bits are the RID.

    Subclasses set `table_numbers`, with None marking a tag that
    is reserved and names no table.
    `tag_bits` and `table_names` are derived from it.
    """
    #
    # required properties for subclasses.
    #
    # for example:
    #
    #   class TypeDefOrRef(CodedIndex):
    #       table_numbers = (MetadataTables.TypeDef, MetadataTables.TypeRef, MetadataTables.TypeSpec)
    #
    table_numbers: Sequence[Optional[enums.MetadataTables]]
    tag_bits: int
    table_names: Tuple[Optional[str], ...]

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)
        assert cls.table_numbers
        # ceil(log2(n))
        cls.tag_bits = (len(cls.table_numbers) - 1).bit_length()
        cls.table_names = tuple(t.name if t is not None else None for t in cls.table_numbers)

    def __init__(self, table: Union[enums.MetadataTables, int], row_index: int, tag: int):
        super().__init__(table, row_index)
        self.tag: int = tag

    @classmethod
    def decode(cls, value: int) -> Optional["CodedIndex"]:
        """
        Decode a raw coded index value.
        Returns None for a null reference (RID 0).
        """
        tag = value & ((1 << cls.tag_bits) - 1)
        row_index = value >> cls.tag_bits

        if tag >= len(cls.table_numbers):
            raise errors.MalformedMetadata(
                "{}: tag {} out of range (raw value 0x{:x})".format(cls.__name__, tag, value)
            )

        table = cls.table_numbers[tag]
        if table is None:
            if row_index != 0:
                raise errors.MalformedMetadata(
                    "{}: tag {} names no table (raw value 0x{:x})".format(cls.__name__, tag, value)
                )
            return None

        if row_index == 0:
            return None

        return cls(table, row_index, tag)

    @classmethod
    def index_size(cls, row_counts: Sequence[int]) -> int:
        """
        Width in bytes of this coded index given the row counts
        of all tables (indexed by table number).
        """
        max_rows = 0
        for table in cls.table_numbers:
            if table is None:
                continue
            max_rows = max(max_rows, row_counts[table])

        # if the largest RID fits in a word, minus the bits used by the tag
        if max_rows > (1 << (16 - cls.tag_bits)) - 1:
            return 4
        return 2


########
# Column descriptions, used by the schemas in mdtable.py.
#
# Each column knows the name of its value on a row, the name of
# its member on the raw RowStruct, how wide it is given the table
# stream header, and how to turn the raw integer into a row value.


class Column(abc.ABC):
    suffix = ""

    def __init__(self, name: str):
        self.name: str = name

    @property
    def field_name(self) -> str:
        """name of the member on the RowStruct"""
        return self.name + self.suffix

    @abc.abstractmethod
    def width(self, heap_sizes: int, row_counts: Sequence[int]) -> int:
        ...

    def resolve(self, value: int) -> Any:
        return value

    def __repr__(self):
        return "{}({!r})".format(self.__class__.__name__, self.name)


class FixedColumn(Column):
    def __init__(self, name: str, size: int):
        super().__init__(name)
        assert size in (1, 2, 4, 8)
        self.size = size

    def width(self, heap_sizes, row_counts):
        return self.size


class HeapIndexColumn(Column):
    """An index into #Strings, #GUID or #Blob, selected by the HeapSizes bit of that heap."""

    _suffixes = {
        enums.HeapSizes.STRINGS: "_StringIndex",
        enums.HeapSizes.GUIDS: "_GuidIndex",
        enums.HeapSizes.BLOBS: "_BlobIndex",
    }

    def __init__(self, name: str, heap: enums.HeapSizes):
        super().__init__(name)
        assert heap in self._suffixes
        self.heap = heap
        self.suffix = self._suffixes[heap]

    def width(self, heap_sizes, row_counts):
        if heap_sizes & self.heap:
            return 4
        return 2


class TableIndexColumn(Column):
    """
    A simple index into one table.

    `is_list` marks the first row of a run (FieldList, MethodList, ...),
    which may legitimately be one past the end of the target table.
    """
    suffix = "_Index"

    def __init__(self, name: str, table: enums.MetadataTables, is_list: bool = False):
        super().__init__(name)
        self.table = table
        self.is_list = is_list

    def width(self, heap_sizes, row_counts):
        if row_counts[self.table] > 0xFFFF:
            return 4
        return 2

    def resolve(self, value):
        if value == 0:
            return None
        return MDTableIndex(self.table, value)


class CodedIndexColumn(Column):
    suffix = "_CodedIndex"

    def __init__(self, name: str, coded_index: Type[CodedIndex]):
        super().__init__(name)
        self.coded_index = coded_index

    def width(self, heap_sizes, row_counts):
        return self.coded_index.index_size(row_counts)

    def resolve(self, value):
        return self.coded_index.decode(value)


class TableLayout(object):
    """
    The resolved layout of one table: each column with its width in bytes
    and offset within the row, plus the RowStruct format for one row.
    """

    def __init__(self, table: enums.MetadataTables, columns: Sequence[Column], heap_sizes: int, row_counts: Sequence[int]):
        self.table: enums.MetadataTables = table
        self.row_count: int = row_counts[table]
        self.entries: List[Tuple[Column, int, int]] = []

        offset = 0
        for column in columns:
            w = column.width(heap_sizes, row_counts)
            self.entries.append((column, w, offset))
            offset += w
        self.row_size: int = offset

        self.format: Tuple[str, Tuple[str, ...]] = (
            "CLR_METADATA_TABLE_" + table.name.upper(),
            tuple("{},{}".format(utils.num_bytes_to_struct_char(w), c.field_name) for c, w, _ in self.entries),
        )

    @property
    def columns(self) -> List[Column]:
        return [c for c, _, _ in self.entries]

    def width_of(self, name: str) -> int:
        for column, w, _ in self.entries:
            if column.name == name:
                return w
        raise KeyError(name)

    def new_struct(self, file_offset: Optional[int] = None) -> RowStruct:
        return RowStruct(format=self.format, file_offset=file_offset)


class MDTableRow(object):
    """
    One row of a Metadata Table.

    Column values are available as attributes named after the ECMA-335
    columns, for example `row.TypeName` or `row.Extends`.
    Heap columns hold the raw heap index, table and coded index columns hold
    an MDTableIndex, or None for a null reference.

    The unpacked RowStruct is kept in `struct`.
    """

    def __init__(self, table: enums.MetadataTables, rid: int, struct: RowStruct, layout: TableLayout):
        self.table: enums.MetadataTables = table
        self.rid: int = rid
        self.struct: RowStruct = struct
        # column name -> RowStruct member name
        self._fields: Dict[str, str] = {}
        for column in layout.columns:
            self._fields[column.name] = column.field_name
            setattr(self, column.name, column.resolve(getattr(struct, column.field_name)))

    def values(self) -> List[Tuple[str, Any]]:
        return [(name, getattr(self, name)) for name in self._fields]

    def raw_value(self, name: str) -> int:
        """the undecoded integer of the named column"""
        return getattr(self.struct, self._fields[name])

    @property
    def token(self) -> int:
        return (self.table.value << 24) | self.rid

    def __eq__(self, other):
        if not isinstance(other, MDTableRow):
            return False
        return self.table == other.table and self.rid == other.rid and self.values() == other.values()

    def __repr__(self):
        return "{}Row(rid={}, {})".format(
            self.table.name, self.rid, ", ".join("{}={!r}".format(n, v) for n, v in self.values())
        )


class ClrMetaDataTable(object):
    """
    A decoded Metadata table.  Rows can be accessed
     directly like a list with bracket [] syntax.
    Use `get_with_row_index` when you have a Rid/token/row_index,
     since these are 1-indexed.
    Use bracket [] syntax when you want 0-indexing.

    offset is relative to the start of the metadata root.
    """

    def __init__(self, layout: TableLayout, is_sorted: bool, rows: List[MDTableRow], offset: int = 0):
        self.layout: TableLayout = layout
        self.number: enums.MetadataTables = layout.table
        self.name: str = layout.table.name
        self.is_sorted: bool = is_sorted
        self.num_rows: int = layout.row_count
        self.row_size: int = layout.row_size
        self.rows: List[MDTableRow] = rows
        self.offset: int = offset

    def __getitem__(self, index: int) -> MDTableRow:
        return self.rows[index]

    def __len__(self):
        return len(self.rows)

    def __iter__(self):
        return iter(self.rows)

    def __eq__(self, other):
        if not isinstance(other, ClrMetaDataTable):
            return False
        return self.number == other.number and self.is_sorted == other.is_sorted and self.rows == other.rows

    def __repr__(self):
        return "<ClrMetaDataTable {} rows={} row_size={}>".format(self.name, self.num_rows, self.row_size)

    def get_with_row_index(self, row_index: int) -> MDTableRow:
        """
        fetch the row with the given row index.
        remember: row indices, at least those encoded within a .NET file, are 1-based.
        so, you should prefer to use this method when you get a reference to a row.
        use `__getitem__` when you want 0-based indexing.
        """
        if row_index < 1 or row_index > len(self.rows):
            raise IndexError("{}: row index {} out of range".format(self.name, row_index))
        return self.rows[row_index - 1]
