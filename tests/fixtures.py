"""
Builders for synthetic metadata blobs.

Everything here is packed by hand with struct, independently of dnmeta,
so that tests compare the parser against the on-disk format.
"""
import struct
from typing import Dict, List, Tuple, Sequence

SIGNATURE = 0x424A5342

# table numbers used below
MODULE = 0x00
TYPEREF = 0x01
TYPEDEF = 0x02
FIELD = 0x04
METHODPTR = 0x05
METHODDEF = 0x06
PARAM = 0x08
ASSEMBLY = 0x20
ASSEMBLYREF = 0x23

MVID = bytes.fromhex("78563412" "3412" "7856" "0102030405060708")


def align4(n):
    return (n + 3) & ~3


def compressed(n: int) -> bytes:
    if n <= 0x7F:
        return struct.pack("B", n)
    if n <= 0x3FFF:
        return struct.pack(">H", n | 0x8000)
    return struct.pack(">I", n | 0xC0000000)


def strings_heap(strings: Sequence[str]) -> Tuple[bytes, Dict[str, int]]:
    """#Strings heap starting with the empty string, plus the offset of each string."""
    data = b"\x00"
    offsets = {"": 0}
    for s in strings:
        offsets[s] = len(data)
        data += s.encode("utf-8") + b"\x00"
    return data, offsets


def blob_heap(blobs: Sequence[bytes]) -> Tuple[bytes, List[int]]:
    data = b"\x00"
    offsets = []
    for b in blobs:
        offsets.append(len(data))
        data += compressed(len(b)) + b
    return data, offsets


def us_heap(strings: Sequence[str]) -> Tuple[bytes, List[int]]:
    data = b"\x00"
    offsets = []
    for s in strings:
        raw = s.encode("utf-16-le", "surrogatepass")
        flag = b"\x01" if any(ord(c) > 0x7F for c in s) else b"\x00"
        offsets.append(len(data))
        data += compressed(len(raw) + 1) + raw + flag
    return data, offsets


def table_stream(tables: Dict[int, Tuple[str, List[tuple]]], heap_sizes=0, sorted_mask=0, row_counts=None) -> bytes:
    """
    #~ stream.  `tables` maps table number to (struct format of one row, rows).
    `row_counts` overrides the declared row counts, by table number.
    """
    valid = 0
    for number in tables:
        valid |= 1 << number
    data = struct.pack("<IBBBBQQ", 0, 2, 0, heap_sizes, 1, valid, sorted_mask)
    for number in sorted(tables):
        count = len(tables[number][1])
        if row_counts and number in row_counts:
            count = row_counts[number]
        data += struct.pack("<I", count)
    if heap_sizes & 0x40:
        data += struct.pack("<I", 0xCAFEBABE)
    for number in sorted(tables):
        fmt, rows = tables[number]
        for row in rows:
            data += struct.pack(fmt, *row)
    return data


def metadata_root(streams: Sequence[Tuple[str, bytes]], version: str = "v4.0.30319") -> bytes:
    """BSJB root with a stream directory, followed by each stream padded to 4 bytes."""
    raw_version = version.encode("utf-8") + b"\x00"
    raw_version += b"\x00" * (align4(len(raw_version)) - len(raw_version))
    header = struct.pack("<IHHII", SIGNATURE, 1, 1, 0, len(raw_version)) + raw_version
    header += struct.pack("<HH", 0, len(streams))

    directory_size = sum(8 + align4(len(name.encode("utf-8")) + 1) for name, _ in streams)
    offset = len(header) + directory_size
    directory = b""
    body = b""
    for name, data in streams:
        raw_name = name.encode("utf-8") + b"\x00"
        raw_name += b"\x00" * (align4(len(raw_name)) - len(raw_name))
        directory += struct.pack("<II", offset, len(data)) + raw_name
        padded = data + b"\x00" * (align4(len(data)) - len(data))
        body += padded
        offset += len(padded)
    return header + directory + body


class Hello(object):
    """
    A small assembly:

        assembly Test 1.0.0.0, module Test.dll
        class Program : System.Object { int x; static void Main(); void Run(); }
        assembly reference mscorlib 4.0.0.0
        user string "Hello"
    """

    def __init__(self, assembly_rows=1, extra_streams=(), type_name="Program", method_ptrs=None):
        self.strings, self.string_offsets = strings_heap(
            ["Test.dll", "Test", type_name, "<Module>", "Main", "Run", "x", "System", "Object", "mscorlib"]
        )
        s = self.string_offsets

        self.method_sig = b"\x00\x00\x01"
        self.field_sig = b"\x06\x08"
        self.token = bytes.fromhex("b77a5c561934e089")
        self.blobs, blob_offsets = blob_heap([self.method_sig, self.field_sig, self.token])
        sig, field_sig, token = blob_offsets

        self.user_strings, self.us_offsets = us_heap(["Hello"])
        self.guids = MVID

        assembly = [(0x8004, 1, 0, 0, 0, 0, 0, s["Test"], 0)] * assembly_rows

        tables = {
            # Generation, Name, Mvid, EncId, EncBaseId
            MODULE: ("<HHHHH", [(0, s["Test.dll"], 1, 0, 0)]),
            # ResolutionScope (AssemblyRef 1), TypeName, TypeNamespace
            TYPEREF: ("<HHH", [((1 << 2) | 2, s["Object"], s["System"])]),
            # Flags, TypeName, TypeNamespace, Extends, FieldList, MethodList
            TYPEDEF: ("<IHHHHH", [
                (0, s["<Module>"], 0, 0, 1, 1),
                # public, beforefieldinit, extends TypeRef 1
                (0x00100001, s[type_name], 0, (1 << 2) | 1, 1, 1),
            ]),
            # Flags, Name, Signature
            FIELD: ("<HHH", [(0x0001, s["x"], field_sig)]),
            # Rva, ImplFlags, Flags, Name, Signature, ParamList
            METHODDEF: ("<IHHHHH", [
                (0x2050, 0, 0x0096, s["Main"], sig, 1),
                (0x2060, 0, 0x0086, s["Run"], sig, 1),
            ]),
            # HashAlgId, Major, Minor, Build, Revision, Flags, PublicKey, Name, Culture
            ASSEMBLY: ("<IHHHHIHHH", assembly),
            # Major, Minor, Build, Revision, Flags, PublicKeyOrToken, Name, Culture, HashValue
            ASSEMBLYREF: ("<HHHHIHHHH", [(4, 0, 0, 0, 0, token, s["mscorlib"], 0, 0)]),
        }
        if method_ptrs is not None:
            # Method
            tables[METHODPTR] = ("<H", [(rid,) for rid in method_ptrs])
        self.tables = table_stream(tables)

        self.streams = [
            ("#~", self.tables),
            ("#Strings", self.strings),
            ("#US", self.user_strings),
            ("#GUID", self.guids),
            ("#Blob", self.blobs),
        ] + list(extra_streams)

    def build(self) -> bytes:
        return metadata_root(self.streams)


def hello_metadata(**kwargs) -> bytes:
    return Hello(**kwargs).build()
