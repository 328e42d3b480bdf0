# -*- coding: utf-8 -*-
"""
Read-only views over decoded metadata rows.

A view resolves the heap indexes of one row into strings, GUIDs and
blobs, and interprets its flags.  Views are built by the query methods
of dnmeta.Metadata, for example `Metadata.types()`.

Copyright (c) 2020-2024 MalwareFrank
"""
import logging
from typing import TYPE_CHECKING, Any, List, Tuple, Union, Callable, Iterator, Optional
from collections.abc import Sequence

from . import enums
from .base import MDTableRow, MDTableIndex
from .stream import HeapItemGuid

if TYPE_CHECKING:
    from . import Metadata


logger = logging.getLogger(__name__)


def _flags(flag_class, value: int):
    try:
        return flag_class(value)
    except ValueError:
        logger.warning("failed to interpret flags: invalid flag data: 0x%x", value)
        return None


def _full_name(namespace: str, name: str) -> str:
    if namespace:
        return namespace + "." + name
    return name


def _version_string(version: Tuple[int, int, int, int]) -> str:
    return "{}.{}.{}.{}".format(*version)


class RowSequence(Sequence):
    """
    A restartable, indexable sequence of views over the rows of one table.
    Each access builds a fresh view.
    """

    def __init__(self, rows: List[MDTableRow], factory: Callable[[MDTableRow], Any]):
        self._rows = rows
        self._factory = factory

    def __len__(self) -> int:
        return len(self._rows)

    def __getitem__(self, i):
        if isinstance(i, slice):
            return [self._factory(row) for row in self._rows[i]]
        return self._factory(self._rows[i])

    def __iter__(self) -> Iterator:
        for row in self._rows:
            yield self._factory(row)


class RowView(object):
    """Base for views: the row and the Metadata it came from."""

    def __init__(self, md: "Metadata", row: MDTableRow):
        self._md = md
        self.row = row
        self.rid: int = row.rid

    @property
    def token(self) -> int:
        return self.row.token

    def _string(self, name: str) -> str:
        return self._md.strings.get_str(getattr(self.row, name))

    def _blob(self, name: str) -> bytes:
        return self._md.blobs.get_bytes(getattr(self.row, name))

    def __eq__(self, other):
        if not isinstance(other, RowView):
            return False
        return type(self) is type(other) and self.row == other.row

    def __repr__(self):
        return "<{} rid={}>".format(self.__class__.__name__, self.rid)


class ModuleInfo(RowView):
    def __init__(self, md: "Metadata", row: MDTableRow):
        super().__init__(md, row)
        self.generation: int = row.Generation
        self.name: str = self._string("Name")
        self.mvid: Optional[HeapItemGuid] = md.guids.get(row.Mvid)

    def __repr__(self):
        return "<ModuleInfo {!r} mvid={}>".format(self.name, self.mvid)


class AssemblyInfo(RowView):
    """
    The Assembly row: identity of the assembly described by this metadata.

    culture and public_key are None when empty.
    hash_algorithm is an AssemblyHashAlgorithm, or the raw int when unknown.
    """

    def __init__(self, md: "Metadata", row: MDTableRow):
        super().__init__(md, row)
        self.name: str = self._string("Name")
        self.version: Tuple[int, int, int, int] = (
            row.MajorVersion, row.MinorVersion, row.BuildNumber, row.RevisionNumber,
        )
        self.culture: Optional[str] = self._string("Culture") or None
        self.public_key: Optional[bytes] = self._blob("PublicKey") or None
        self.flags: int = row.Flags
        self.attributes: Optional[enums.ClrAssemblyFlags] = _flags(enums.ClrAssemblyFlags, row.Flags)
        self.hash_algorithm: Union[enums.AssemblyHashAlgorithm, int]
        try:
            self.hash_algorithm = enums.AssemblyHashAlgorithm(row.HashAlgId)
        except ValueError:
            logger.warning("unknown assembly hash algorithm: 0x%x", row.HashAlgId)
            self.hash_algorithm = row.HashAlgId

    def version_string(self) -> str:
        return _version_string(self.version)

    def __repr__(self):
        return "<AssemblyInfo {}, Version={}>".format(self.name, self.version_string())


class AssemblyRefInfo(RowView):
    def __init__(self, md: "Metadata", row: MDTableRow):
        super().__init__(md, row)
        self.name: str = self._string("Name")
        self.version: Tuple[int, int, int, int] = (
            row.MajorVersion, row.MinorVersion, row.BuildNumber, row.RevisionNumber,
        )
        self.culture: Optional[str] = self._string("Culture") or None
        # a full public key when afPublicKey is set, otherwise the token
        self.public_key_or_token: Optional[bytes] = self._blob("PublicKeyOrToken") or None
        self.flags: int = row.Flags
        self.attributes: Optional[enums.ClrAssemblyFlags] = _flags(enums.ClrAssemblyFlags, row.Flags)
        self.hash_value: Optional[bytes] = self._blob("HashValue") or None

    def version_string(self) -> str:
        return _version_string(self.version)

    def __repr__(self):
        return "<AssemblyRefInfo {}, Version={}>".format(self.name, self.version_string())


class TypeRefView(RowView):
    def __init__(self, md: "Metadata", row: MDTableRow):
        super().__init__(md, row)
        self.name: str = self._string("TypeName")
        self.namespace: str = self._string("TypeNamespace")
        self.resolution_scope: Optional[MDTableIndex] = row.ResolutionScope

    def full_name(self) -> str:
        return _full_name(self.namespace, self.name)

    def __repr__(self):
        return "<TypeRefView {}>".format(self.full_name())


class FieldView(RowView):
    def __init__(self, md: "Metadata", row: MDTableRow):
        super().__init__(md, row)
        self.name: str = self._string("Name")
        self.flags: int = row.Flags
        self.signature: bytes = self._blob("Signature")

    def __repr__(self):
        return "<FieldView {}>".format(self.name)


class MethodView(RowView):
    def __init__(self, md: "Metadata", row: MDTableRow):
        super().__init__(md, row)
        self.name: str = self._string("Name")
        self.rva: int = row.Rva
        self.flags: int = row.Flags
        self.impl_flags: int = row.ImplFlags
        self.attributes: Optional[enums.ClrMethodAttr] = _flags(enums.ClrMethodAttr, row.Flags)
        self.signature: bytes = self._blob("Signature")

    def __repr__(self):
        return "<MethodView {} rva=0x{:x}>".format(self.name, self.rva)


class TypeDefView(RowView):
    def __init__(self, md: "Metadata", row: MDTableRow):
        super().__init__(md, row)
        self.name: str = self._string("TypeName")
        self.namespace: str = self._string("TypeNamespace")
        self.flags: int = row.Flags
        self.attributes: Optional[enums.ClrTypeAttr] = _flags(enums.ClrTypeAttr, row.Flags)
        self.extends: Optional[MDTableIndex] = row.Extends

    def full_name(self) -> str:
        return _full_name(self.namespace, self.name)

    def methods(self) -> List[MethodView]:
        table = self._md.get_table(enums.MetadataTables.MethodDef)
        if table is None:
            return []
        return [MethodView(self._md, table.get_with_row_index(i)) for i in self._md.row_run(self.row, "MethodList")]

    def fields(self) -> List[FieldView]:
        table = self._md.get_table(enums.MetadataTables.Field)
        if table is None:
            return []
        return [FieldView(self._md, table.get_with_row_index(i)) for i in self._md.row_run(self.row, "FieldList")]

    def __repr__(self):
        return "<TypeDefView {}>".format(self.full_name())
