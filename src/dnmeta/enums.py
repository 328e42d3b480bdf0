# -*- coding: utf-8 -*-

import enum as _enum
from typing import Dict, Type, Iterable

########
# Most developers may just use the Clr* classes to automatically parse the
# flags defined in winsdk corhdr.h
#
# The definitions in winsdk corhdr.h may be accesses through the Cor* classes.


def _getvars(o):
    for attr in dir(o):
        if not callable(getattr(o, attr)) and not attr.startswith("_"):
            yield attr


class ClrMetaDataEnum(object):
    """
    Base class for CorHdr.h metadata enumerations.
    """
    pass


class ClrFlags(object):
    """
    Base class for CLR MetaData Tables' Flags.

    When instantiated, this class takes a value and sets member vars to True
    according to the IntEnum's in _masks and _flags.

    _flags are bitmasks that match on single bits, whereas _masks are enum values that match exact value.

    :var corhdr_enum:   the class that defines values from winsdk corhdr.h.
    :var _masks:        mask name (on corhdr_enum) to the enum that the masked value must match exactly.
    :var _flags:        classes defining bit flags to check and set if set.
    """

    corhdr_enum: Type[ClrMetaDataEnum]
    _masks: Dict[str, Type[_enum.IntEnum]]
    _flags: Iterable[Type[_enum.IntEnum]]

    def __init__(self, value: int):
        self.value = value

        for mask_name, enum_class in getattr(self, "_masks", {}).items():
            mask = getattr(self.corhdr_enum, mask_name)
            # raises ValueError for a masked value the enum does not define
            enum_entry = enum_class(mask & value)
            for candidate in enum_class:
                setattr(self, candidate.name, candidate == enum_entry)

        for value_class in getattr(self, "_flags", ()):
            for m in value_class:
                setattr(self, m.name, (m.value & value) != 0)

    def __iter__(self):
        for name in _getvars(self):
            val = getattr(self, name)
            if isinstance(val, bool):
                yield name, val

    def __eq__(self, other):
        if isinstance(other, ClrFlags):
            return type(self) is type(other) and self.value == other.value
        if isinstance(other, int):
            return self.value == other
        return False

    def __repr__(self):
        return '\n'.join(["{:<40}{:>8}".format(n, str(v)) for n, v in self])


####
# https://docs.microsoft.com/en-us/dotnet/framework/unmanaged-api/metadata/cortypeattr-enumeration

class CorTypeVisibility(_enum.IntEnum):
    tdNotPublic             =   0x00000000
    tdPublic                =   0x00000001
    tdNestedPublic          =   0x00000002
    tdNestedPrivate         =   0x00000003
    tdNestedFamily          =   0x00000004
    tdNestedAssembly        =   0x00000005
    tdNestedFamANDAssem     =   0x00000006
    tdNestedFamORAssem      =   0x00000007


class CorTypeLayout(_enum.IntEnum):
    tdAutoLayout            =   0x00000000
    tdSequentialLayout      =   0x00000008
    tdExplicitLayout        =   0x00000010


class CorTypeSemantics(_enum.IntEnum):
    tdClass                 =   0x00000000
    tdInterface             =   0x00000020


class CorTypeStringFormat(_enum.IntEnum):
    tdAnsiClass             =   0x00000000
    tdUnicodeClass          =   0x00010000
    tdAutoClass             =   0x00020000
    tdCustomFormatClass     =   0x00030000


class CorTypeAttrFlags(_enum.IntEnum):
    tdAbstract              =   0x00000080
    tdSealed                =   0x00000100
    tdSpecialName           =   0x00000400
    tdRTSpecialName         =   0x00000800
    tdImport                =   0x00001000
    tdSerializable          =   0x00002000
    tdWindowsRuntime        =   0x00004000
    tdHasSecurity           =   0x00040000
    tdBeforeFieldInit       =   0x00100000
    tdForwarder             =   0x00200000


class CorTypeAttr(ClrMetaDataEnum):
    tdVisibilityMask        =   0x00000007
    tdLayoutMask            =   0x00000018
    tdClassSemanticsMask    =   0x00000020
    tdStringFormatMask      =   0x00030000


class ClrTypeAttr(ClrFlags):
    """Interpreted TypeDef.Flags, e.g. `attrs.tdPublic`, `attrs.tdInterface`."""

    corhdr_enum = CorTypeAttr
    _masks = {
        "tdVisibilityMask": CorTypeVisibility,
        "tdLayoutMask": CorTypeLayout,
        "tdClassSemanticsMask": CorTypeSemantics,
        "tdStringFormatMask": CorTypeStringFormat,
    }
    _flags = (CorTypeAttrFlags, )


####
# https://www.ntcore.com/files/dotnetformat.htm

class CorMethodMemberAccess(_enum.IntEnum):
    mdPrivateScope              =   0x0000      # Member not referenceable.
    mdPrivate                   =   0x0001      # Accessible only by the parent type.
    mdFamANDAssem               =   0x0002      # Accessible by sub-types only in this Assembly.
    mdAssem                     =   0x0003      # Accessibly by anyone in the Assembly.
    mdFamily                    =   0x0004      # Accessible only by type and sub-types.
    mdFamORAssem                =   0x0005      # Accessibly by sub-types anywhere, plus anyone in assembly.
    mdPublic                    =   0x0006      # Accessibly by anyone who has visibility to this scope.
    mdUnknown1                  =   0x0007


class CorMethodAttrFlags(_enum.IntEnum):
    mdStatic                    =   0x0010
    mdFinal                     =   0x0020
    mdVirtual                   =   0x0040
    mdHideBySig                 =   0x0080
    mdCheckAccessOnOverride     =   0x0200
    mdAbstract                  =   0x0400
    mdSpecialName               =   0x0800
    mdPinvokeImpl               =   0x2000
    mdUnmanagedExport           =   0x0008
    mdRTSpecialName             =   0x1000
    mdHasSecurity               =   0x4000
    mdRequireSecObject          =   0x8000


class CorMethodVtableLayout(_enum.IntEnum):
    mdReuseSlot                 =   0x0000      # The default.
    mdNewSlot                   =   0x0100      # Method always gets a new slot in the vtable.


class CorMethodAttr(ClrMetaDataEnum):
    mdMemberAccessMask          =   0x0007
    mdVtableLayoutMask          =   0x0100


class ClrMethodAttr(ClrFlags):
    """Interpreted MethodDef.Flags, e.g. `attrs.mdStatic`."""

    corhdr_enum = CorMethodAttr
    _masks = {
        "mdMemberAccessMask": CorMethodMemberAccess,
        "mdVtableLayoutMask": CorMethodVtableLayout,
    }
    _flags = (CorMethodAttrFlags, )


class CorAssemblyFlagsEnum(_enum.IntEnum):
    afPublicKey                     =   0x0001      # The assembly ref holds the full (unhashed) public key.
    afPA_Specified                  =   0x0080      # Propagate PA flags to AssemblyRef record
    afRetargetable                  =   0x0100
    afDisableJITcompileOptimizer    =   0x4000      # From "DebuggableAttribute".
    afEnableJITcompileTracking      =   0x8000      # From "DebuggableAttribute".


class CorAssemblyFlagsPA(_enum.IntEnum):
    afPA_None               =   0x0000      # Processor Architecture unspecified
    afPA_MSIL               =   0x0010      # Processor Architecture: neutral (PE32)
    afPA_x86                =   0x0020      # Processor Architecture: x86 (PE32)
    afPA_IA64               =   0x0030      # Processor Architecture: Itanium (PE32+)
    afPA_AMD64              =   0x0040      # Processor Architecture: AMD X64 (PE32+)
    afPA_Unknown1           =   0x0050
    afPA_Unknown2           =   0x0060
    afPA_Unknown3           =   0x0070


class CorAssemblyFlags(ClrMetaDataEnum):
    afPA_Mask               =   0x0070      # Bits describing the processor architecture


class ClrAssemblyFlags(ClrFlags):
    """Interpreted Assembly.Flags and AssemblyRef.Flags."""

    corhdr_enum = CorAssemblyFlags
    _masks = {
        "afPA_Mask": CorAssemblyFlagsPA,
    }
    _flags = (CorAssemblyFlagsEnum, )


class HeapSizes(_enum.IntFlag):
    """Bits of the HeapSizes byte in the #~ stream header."""
    STRINGS = 0x01      # #Strings indexes are 4 bytes
    GUIDS = 0x02        # #GUID indexes are 4 bytes
    BLOBS = 0x04        # #Blob indexes are 4 bytes
    PADDING_BIT = 0x08
    DELTA_ONLY = 0x20
    EXTRA_DATA = 0x40   # an extra dword follows the row counts
    HAS_DELETE = 0x80


class MetadataTables(_enum.IntEnum):
    Module = 0
    TypeRef = 1
    TypeDef = 2
    FieldPtr = 3  # Not public
    Field = 4
    MethodPtr = 5  # Not public
    MethodDef = 6
    ParamPtr = 7  # Not public
    Param = 8
    InterfaceImpl = 9
    MemberRef = 10
    Constant = 11
    CustomAttribute = 12
    FieldMarshal = 13
    DeclSecurity = 14
    ClassLayout = 15
    FieldLayout = 16
    StandAloneSig = 17
    EventMap = 18
    EventPtr = 19  # Not public
    Event = 20
    PropertyMap = 21
    PropertyPtr = 22  # Not public
    Property = 23
    MethodSemantics = 24
    MethodImpl = 25
    ModuleRef = 26
    TypeSpec = 27
    ImplMap = 28
    FieldRva = 29
    EncLog = 30
    EncMap = 31
    Assembly = 32
    AssemblyProcessor = 33
    AssemblyOS = 34
    AssemblyRef = 35
    AssemblyRefProcessor = 36
    AssemblyRefOS = 37
    File = 38
    ExportedType = 39
    ManifestResource = 40
    NestedClass = 41
    GenericParam = 42
    MethodSpec = 43
    GenericParamConstraint = 44
    # 45 through 63 have no schema


class AssemblyHashAlgorithm(_enum.IntEnum):
    """
    Per Microsoft documentation, "Specifies all the hash algorithms used for hashing files and for generating the strong name."

    REFERENCE:
        https://docs.microsoft.com/en-us/dotnet/api/system.configuration.assemblies.assemblyhashalgorithm?view=net-5.0
    """
    NONE    = 0
    MD5     = 0x8003
    SHA1    = 0x8004
    SHA256  = 0x800c
    SHA384  = 0x800d
    SHA512  = 0x800e
