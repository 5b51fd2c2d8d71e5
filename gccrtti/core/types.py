# -*- coding: utf-8 -*-
"""
gccrtti/core/types.py - Program model data structures

Shared data structures handed out by every program backend (in-memory
image, ELF/PE loaders, rizin). Analysis modules only ever see these.
"""

from typing import Optional
from dataclasses import dataclass
from enum import Enum, auto


# =============================================================================
# Architecture
# =============================================================================

class Endianness(Enum):
    """Byte order"""
    LITTLE = auto()
    BIG = auto()

    @property
    def byteorder(self) -> str:
        return "little" if self is Endianness.LITTLE else "big"


# =============================================================================
# Symbols and sections
# =============================================================================

@dataclass
class Symbol:
    """
    Symbol table entry

    ``name`` is the label inside ``namespace``. GNU special names are
    split on load, so ``_ZTV3Foo`` becomes ``name="vtable"`` nested under
    ``namespace="3Foo"``; ``raw_name`` keeps the original spelling.
    """
    address: int
    name: str
    type: str = ""          # func, object, notype, ...
    size: int = 0
    is_global: bool = False
    namespace: str = ""
    raw_name: str = ""

    @property
    def full_name(self) -> str:
        return f"{self.namespace}::{self.name}" if self.namespace else self.name


@dataclass
class Section:
    """Section / segment information"""
    name: str
    virtual_address: int
    virtual_size: int
    raw_offset: int = 0
    raw_size: int = 0

    is_executable: bool = False
    is_writable: bool = False
    is_readable: bool = True
    is_data: bool = True        # may hold program data; False for loader metadata

    @property
    def end_address(self) -> int:
        return self.virtual_address + self.virtual_size

    def contains(self, address: int, size: int = 1) -> bool:
        return self.virtual_address <= address and address + size <= self.end_address


# =============================================================================
# Cross references
# =============================================================================

class XRefType(Enum):
    """Cross reference type"""
    CALL = auto()
    JUMP = auto()
    DATA = auto()
    STRING = auto()
    UNKNOWN = auto()


@dataclass
class XRef:
    """Cross reference"""
    from_addr: int
    to_addr: int
    type: XRefType = XRefType.DATA

    from_function: str = ""
    to_function: str = ""


# =============================================================================
# Functions and typed data
# =============================================================================

@dataclass(frozen=True)
class FunctionRef:
    """A function known to the program at ``address``"""
    address: int
    name: str = ""

    def __str__(self) -> str:
        return self.name or f"FUN_{self.address:08x}"


class DataKind(Enum):
    """Type of a data item defined in the listing"""
    UNDEFINED = auto()      # placeholder bytes with no real type
    POINTER = auto()
    INTEGER = auto()
    STRING = auto()
    STRUCTURE = auto()
    TYPEINFO = auto()
    VTABLE = auto()


@dataclass
class DataItem:
    """A typed data item occupying ``length`` bytes at ``address``"""
    address: int
    length: int
    kind: DataKind = DataKind.UNDEFINED
    name: str = ""

    @property
    def end_address(self) -> int:
        return self.address + self.length

    def contains(self, address: int) -> bool:
        return self.address <= address < self.end_address

    @property
    def is_undefined(self) -> bool:
        return self.kind is DataKind.UNDEFINED

    @property
    def is_pointer(self) -> bool:
        return self.kind is DataKind.POINTER


def format_address(address: Optional[int]) -> str:
    """Render an address the way log messages and the CLI print it"""
    if address is None:
        return "<none>"
    return f"0x{address:x}"
