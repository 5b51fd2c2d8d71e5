"""Pytest configuration: synthetic GNU C++ ABI images."""

import pytest

from gccrtti.core.image import MemoryImage
from gccrtti.rtti.constants import (
    CLASS_TYPE_INFO_NAMESPACE,
    PURE_VIRTUAL_FUNCTION_NAME,
    SI_CLASS_TYPE_INFO_NAMESPACE,
    VMI_CLASS_TYPE_INFO_NAMESPACE,
)

TEXT_BASE = 0x1000
RODATA_BASE = 0x3000
DATA_BASE = 0x4000
ABI_BASE = 0x8000

# Stops a function-table row: neither zero nor a function entry
TERMINATOR = 0x7777

PUBLIC_BASE = 0x2


class RttiLayout:
    """
    Lays out typeinfo records and vtable groups the way GCC emits them.

    Sections:
        .text          functions (executable)
        .rodata        type name strings
        .data.rel.ro   typeinfos and vtables
        .abi           the three libstdc++ class type_info vtables
    """

    def __init__(self, pointer_size=8):
        self.ptr = pointer_size
        self.image = MemoryImage(pointer_size=pointer_size, name="synthetic")
        self.image.add_section(".text", TEXT_BASE, size=0x1000, executable=True)
        self.image.add_section(".rodata", RODATA_BASE, size=0x1000)
        self.image.add_section(".data.rel.ro", DATA_BASE, size=0x3000)
        self.image.add_section(".abi", ABI_BASE, size=0x100)

        self.vptrs = {}
        for index, (kind, namespace) in enumerate((
            ("class", CLASS_TYPE_INFO_NAMESPACE),
            ("si", SI_CLASS_TYPE_INFO_NAMESPACE),
            ("vmi", VMI_CLASS_TYPE_INFO_NAMESPACE),
        )):
            vtable = ABI_BASE + index * 0x40
            self.image.add_symbol(vtable, f"_ZTV{namespace}")
            self.vptrs[kind] = vtable + 2 * self.ptr

        self._text = TEXT_BASE
        self._rodata = RODATA_BASE
        self._data = DATA_BASE

    # allocation

    def _alloc(self, size):
        address = self._data
        self._data += (size + self.ptr - 1) // self.ptr * self.ptr
        return address

    def skip(self, size=0x40):
        """Leave a gap in .data.rel.ro"""
        self._alloc(size)

    def word(self, address, value):
        if value < 0:
            self.image.write_signed(address, value)
        else:
            self.image.write_pointer(address, value)

    # building blocks

    def function(self, name=""):
        address = self._text
        self._text += 0x10
        self.image.add_function(address, name)
        return address

    def pure_virtual(self):
        return self.function(PURE_VIRTUAL_FUNCTION_NAME)

    def string(self, text):
        address = self._rodata
        data = text.encode("ascii") + b"\x00"
        self.image.write_bytes(address, data)
        self._rodata += len(data)
        return address

    def typeinfo(self, name, kind="class", bases=(), flags=0, symbol=True):
        """
        Write a class type_info record; returns its address.

        ``bases`` holds addresses, or (address, offset_flags) pairs for vmi.
        """
        ptr = self.ptr
        if kind == "class":
            size = 2 * ptr
        elif kind == "si":
            size = 3 * ptr
        else:
            size = 2 * ptr + 8 + len(bases) * 2 * ptr

        address = self._alloc(size)
        self.word(address, self.vptrs[kind])
        self.word(address + ptr, self.string(name))
        if kind == "si":
            self.word(address + 2 * ptr, bases[0])
        elif kind == "vmi":
            self.image.write_uint32(address + 2 * ptr, flags)
            self.image.write_uint32(address + 2 * ptr + 4, len(bases))
            entry = address + 2 * ptr + 8
            for base in bases:
                base_address, offset_flags = base if isinstance(base, tuple) else (base, PUBLIC_BASE)
                self.word(entry, base_address)
                self.word(entry + ptr, offset_flags)
                entry += 2 * ptr
        if symbol:
            self.image.add_symbol(address, f"_ZTI{name}")
        return address

    def vtable(self, typeinfo, tables, offsets=None, symbol=None, prefixes=None, terminate=True):
        """
        Write a vtable group; returns its start address, where the symbol goes.

        ``tables`` rows hold function addresses or 0. ``prefixes`` holds the
        vbase/vcall offset words written before each table's offset-to-top.
        Without ``terminate`` the next group follows directly.
        """
        offsets = offsets or [0] + [-(index * 2 * self.ptr) for index in range(1, len(tables))]
        prefixes = prefixes or [[] for _ in tables]
        size = sum(len(prefix) + 2 + len(row) for prefix, row in zip(prefixes, tables))
        address = self._alloc((size + (1 if terminate else 0)) * self.ptr)

        position = address
        for prefix, offset, row in zip(prefixes, offsets, tables):
            for value in list(prefix) + [offset, typeinfo] + list(row):
                self.word(position, value)
                position += self.ptr
        if terminate:
            self.word(position, TERMINATOR)

        if symbol:
            self.image.add_symbol(address, f"_ZTV{symbol}")
        return address


@pytest.fixture
def layout():
    return RttiLayout(pointer_size=8)


@pytest.fixture(params=[8, 4], ids=["64bit", "32bit"])
def any_layout(request):
    return RttiLayout(pointer_size=request.param)
