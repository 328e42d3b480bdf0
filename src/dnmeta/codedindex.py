# -*- coding: utf-8 -*-
"""
.NET Metadata Tables Coded Indexes

The tag of a coded index selects a table from `table_numbers`, in order.
None marks a reserved tag.


REFERENCES

    https://www.ntcore.com/files/dotnetformat.htm
    ECMA-335 6th Edition, June 2012, Section II.24.2.6 #~ stream


Copyright (c) 2020-2024 MalwareFrank
"""

from .base import CodedIndex
from .enums import MetadataTables as T


class TypeDefOrRef(CodedIndex):
    table_numbers = (T.TypeDef, T.TypeRef, T.TypeSpec)


class HasConstant(CodedIndex):
    table_numbers = (T.Field, T.Param, T.Property)


class HasCustomAttribute(CodedIndex):
    table_numbers = (
        T.MethodDef,
        T.Field,
        T.TypeRef,
        T.TypeDef,
        T.Param,
        T.InterfaceImpl,
        T.MemberRef,
        T.Module,
        T.DeclSecurity,     # "Permission"
        T.Property,
        T.Event,
        T.StandAloneSig,
        T.ModuleRef,
        T.TypeSpec,
        T.Assembly,
        T.AssemblyRef,
        T.File,
        T.ExportedType,
        T.ManifestResource,
        T.GenericParam,
        T.GenericParamConstraint,
        T.MethodSpec,
    )


class HasFieldMarshal(CodedIndex):
    table_numbers = (T.Field, T.Param)


class HasDeclSecurity(CodedIndex):
    table_numbers = (T.TypeDef, T.MethodDef, T.Assembly)


class MemberRefParent(CodedIndex):
    table_numbers = (T.TypeDef, T.TypeRef, T.ModuleRef, T.MethodDef, T.TypeSpec)


class HasSemantics(CodedIndex):
    table_numbers = (T.Event, T.Property)


class MethodDefOrRef(CodedIndex):
    table_numbers = (T.MethodDef, T.MemberRef)


class MemberForwarded(CodedIndex):
    table_numbers = (T.Field, T.MethodDef)


class Implementation(CodedIndex):
    table_numbers = (T.File, T.AssemblyRef, T.ExportedType)


class CustomAttributeType(CodedIndex):
    table_numbers = (None, None, T.MethodDef, T.MemberRef, None)


class ResolutionScope(CodedIndex):
    table_numbers = (T.Module, T.ModuleRef, T.AssemblyRef, T.TypeRef)


class TypeOrMethodDef(CodedIndex):
    table_numbers = (T.TypeDef, T.MethodDef)


ALL_CODED_INDEXES = (
    TypeDefOrRef,
    HasConstant,
    HasCustomAttribute,
    HasFieldMarshal,
    HasDeclSecurity,
    MemberRefParent,
    HasSemantics,
    MethodDefOrRef,
    MemberForwarded,
    Implementation,
    CustomAttributeType,
    ResolutionScope,
    TypeOrMethodDef,
)
