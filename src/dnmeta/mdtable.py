# -*- coding: utf-8 -*-
"""
.NET Metadata Tables

Each table is described by its ordered columns.  The width of a column
is only known once the HeapSizes flags and the row counts of all tables
have been read from the #~ stream header, see `compute_layout`.


REFERENCES

    https://www.ntcore.com/files/dotnetformat.htm
    https://referencesource.microsoft.com/System.AddIn/System/Addin/MiniReflection/MetadataReader/Metadata.cs.html#123
    ECMA-335, 6th Edition, Section II.22


Copyright (c) 2020-2024 MalwareFrank
"""
import logging
from typing import Dict, List, Tuple, Optional, Sequence

from . import errors, codedindex as ci
from .base import (
    Column,
    RowStruct,
    FixedColumn,
    MDTableRow,
    TableLayout,
    CodedIndexColumn,
    HeapIndexColumn,
    TableIndexColumn,
    unpack_struct,
)
from .enums import HeapSizes, MetadataTables as T

logger = logging.getLogger(__name__)

MAX_TABLES = 64


def _u8(name):
    return FixedColumn(name, 1)


def _u16(name):
    return FixedColumn(name, 2)


def _u32(name):
    return FixedColumn(name, 4)


def _string(name):
    return HeapIndexColumn(name, HeapSizes.STRINGS)


def _guid(name):
    return HeapIndexColumn(name, HeapSizes.GUIDS)


def _blob(name):
    return HeapIndexColumn(name, HeapSizes.BLOBS)


def _index(name, table):
    return TableIndexColumn(name, table)


def _list(name, table):
    return TableIndexColumn(name, table, is_list=True)


def _coded(name, coded_index):
    return CodedIndexColumn(name, coded_index)


TABLE_SCHEMAS: Dict[T, Tuple[Column, ...]] = {
    T.Module: (
        _u16("Generation"),
        _string("Name"),
        _guid("Mvid"),
        _guid("EncId"),
        _guid("EncBaseId"),
    ),
    T.TypeRef: (
        _coded("ResolutionScope", ci.ResolutionScope),
        _string("TypeName"),
        _string("TypeNamespace"),
    ),
    T.TypeDef: (
        _u32("Flags"),
        _string("TypeName"),
        _string("TypeNamespace"),
        _coded("Extends", ci.TypeDefOrRef),
        _list("FieldList", T.Field),
        _list("MethodList", T.MethodDef),
    ),
    T.FieldPtr: (
        _index("Field", T.Field),
    ),
    T.Field: (
        _u16("Flags"),
        _string("Name"),
        _blob("Signature"),
    ),
    T.MethodPtr: (
        _index("Method", T.MethodDef),
    ),
    T.MethodDef: (
        _u32("Rva"),
        _u16("ImplFlags"),
        _u16("Flags"),
        _string("Name"),
        _blob("Signature"),
        _list("ParamList", T.Param),
    ),
    T.ParamPtr: (
        _index("Param", T.Param),
    ),
    T.Param: (
        _u16("Flags"),
        _u16("Sequence"),
        _string("Name"),
    ),
    T.InterfaceImpl: (
        _index("Class", T.TypeDef),
        _coded("Interface", ci.TypeDefOrRef),
    ),
    T.MemberRef: (
        _coded("Class", ci.MemberRefParent),
        _string("Name"),
        _blob("Signature"),
    ),
    T.Constant: (
        _u8("Type"),
        _u8("Padding"),
        _coded("Parent", ci.HasConstant),
        _blob("Value"),
    ),
    T.CustomAttribute: (
        _coded("Parent", ci.HasCustomAttribute),
        _coded("Type", ci.CustomAttributeType),
        _blob("Value"),
    ),
    T.FieldMarshal: (
        _coded("Parent", ci.HasFieldMarshal),
        _blob("NativeType"),
    ),
    T.DeclSecurity: (
        _u16("Action"),
        _coded("Parent", ci.HasDeclSecurity),
        _blob("PermissionSet"),
    ),
    T.ClassLayout: (
        _u16("PackingSize"),
        _u32("ClassSize"),
        _index("Parent", T.TypeDef),
    ),
    T.FieldLayout: (
        _u32("Offset"),
        _index("Field", T.Field),
    ),
    T.StandAloneSig: (
        _blob("Signature"),
    ),
    T.EventMap: (
        _index("Parent", T.TypeDef),
        _list("EventList", T.Event),
    ),
    T.EventPtr: (
        _index("Event", T.Event),
    ),
    T.Event: (
        _u16("EventFlags"),
        _string("Name"),
        _coded("EventType", ci.TypeDefOrRef),
    ),
    T.PropertyMap: (
        _index("Parent", T.TypeDef),
        _list("PropertyList", T.Property),
    ),
    T.PropertyPtr: (
        _index("Property", T.Property),
    ),
    T.Property: (
        _u16("Flags"),
        _string("Name"),
        _blob("Type"),
    ),
    T.MethodSemantics: (
        _u16("Semantics"),
        _index("Method", T.MethodDef),
        _coded("Association", ci.HasSemantics),
    ),
    T.MethodImpl: (
        _index("Class", T.TypeDef),
        _coded("MethodBody", ci.MethodDefOrRef),
        _coded("MethodDeclaration", ci.MethodDefOrRef),
    ),
    T.ModuleRef: (
        _string("Name"),
    ),
    T.TypeSpec: (
        _blob("Signature"),
    ),
    T.ImplMap: (
        _u16("MappingFlags"),
        _coded("MemberForwarded", ci.MemberForwarded),
        _string("ImportName"),
        _index("ImportScope", T.ModuleRef),
    ),
    T.FieldRva: (
        _u32("Rva"),
        _index("Field", T.Field),
    ),
    T.EncLog: (
        _u32("Token"),
        _u32("FuncCode"),
    ),
    T.EncMap: (
        _u32("Token"),
    ),
    T.Assembly: (
        _u32("HashAlgId"),
        _u16("MajorVersion"),
        _u16("MinorVersion"),
        _u16("BuildNumber"),
        _u16("RevisionNumber"),
        _u32("Flags"),
        _blob("PublicKey"),
        _string("Name"),
        _string("Culture"),
    ),
    T.AssemblyProcessor: (
        _u32("Processor"),
    ),
    T.AssemblyOS: (
        _u32("OSPlatformID"),
        _u32("OSMajorVersion"),
        _u32("OSMinorVersion"),
    ),
    T.AssemblyRef: (
        _u16("MajorVersion"),
        _u16("MinorVersion"),
        _u16("BuildNumber"),
        _u16("RevisionNumber"),
        _u32("Flags"),
        _blob("PublicKeyOrToken"),
        _string("Name"),
        _string("Culture"),
        _blob("HashValue"),
    ),
    T.AssemblyRefProcessor: (
        _u32("Processor"),
        _index("AssemblyRef", T.AssemblyRef),
    ),
    T.AssemblyRefOS: (
        _u32("OSPlatformID"),
        _u32("OSMajorVersion"),
        _u32("OSMinorVersion"),
        _index("AssemblyRef", T.AssemblyRef),
    ),
    T.File: (
        _u32("Flags"),
        _string("Name"),
        _blob("HashValue"),
    ),
    T.ExportedType: (
        _u32("Flags"),
        _u32("TypeDefId"),
        _string("TypeName"),
        _string("TypeNamespace"),
        _coded("Implementation", ci.Implementation),
    ),
    T.ManifestResource: (
        _u32("Offset"),
        _u32("Flags"),
        _string("Name"),
        _coded("Implementation", ci.Implementation),
    ),
    T.NestedClass: (
        _index("NestedClass", T.TypeDef),
        _index("EnclosingClass", T.TypeDef),
    ),
    T.GenericParam: (
        _u16("Number"),
        _u16("Flags"),
        _coded("Owner", ci.TypeOrMethodDef),
        _string("Name"),
    ),
    T.MethodSpec: (
        _coded("Method", ci.MethodDefOrRef),
        _blob("Instantiation"),
    ),
    T.GenericParamConstraint: (
        _index("Owner", T.GenericParam),
        _coded("Constraint", ci.TypeDefOrRef),
    ),
}


def compute_layout(table: int, heap_sizes: int, row_counts: Sequence[int]) -> TableLayout:
    """
    Resolve the column widths, offsets and row size of `table`.

    row_counts is indexed by table number, with 0 for absent tables.
    Raises UnsupportedTable when there is no schema for the table number.
    """
    try:
        number = T(table)
        columns = TABLE_SCHEMAS[number]
    except (ValueError, KeyError):
        raise errors.UnsupportedTable("no schema for metadata table 0x{:02x}".format(table), table)

    layout = TableLayout(number, columns, heap_sizes, row_counts)
    logger.debug(
        "table %s: %d rows of 0x%x bytes: %s",
        number.name, layout.row_count, layout.row_size,
        " ".join("{}:{}".format(c.name, w) for c, w, _ in layout.entries),
    )
    return layout


def decode_table(data: bytes, layout: TableLayout, row_count: Optional[int] = None, offset: int = 0) -> List[MDTableRow]:
    """
    Decode `row_count` rows of `layout` from the start of `data`.

    `offset` is the position of `data` relative to the metadata root,
    recorded as the file offset of each row structure.
    Raises TruncatedInput when there are fewer than row_count * row_size bytes.
    """
    if row_count is None:
        row_count = layout.row_count

    needed = row_count * layout.row_size
    if len(data) < needed:
        raise errors.TruncatedInput(
            "table {}: need 0x{:x} bytes for {} rows, have 0x{:x}".format(
                layout.table.name, needed, row_count, len(data)
            ),
            offset=offset,
            needed=needed,
        )

    rows: List[MDTableRow] = []
    pos = 0
    for i in range(row_count):
        struct: RowStruct = layout.new_struct(file_offset=offset + pos)
        unpack_struct(struct, data, pos)
        rows.append(MDTableRow(layout.table, i + 1, struct, layout))
        pos += layout.row_size

    return rows
