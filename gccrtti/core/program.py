# -*- coding: utf-8 -*-
"""
gccrtti/core/program.py
Abstract interface to a loaded program image.

The RTTI analysis only talks to memory, the cross-reference index, the
listing (typed data), the symbol table and the function table through
this interface. Backends: MemoryImage (core/image.py) and RizinProgram
(core/rizin_core.py).
"""

from abc import ABC, abstractmethod
from typing import List, Optional, Set

from .exceptions import MemoryAccessError
from .types import DataItem, Endianness, FunctionRef, Symbol


class ProgramView(ABC):
    """Abstract interface for querying a program image."""

    # =========================================================================
    # Memory
    # =========================================================================

    @property
    @abstractmethod
    def pointer_size(self) -> int:
        """Pointer width in bytes."""
        pass

    @property
    def endianness(self) -> Endianness:
        return Endianness.LITTLE

    @abstractmethod
    def read_bytes(self, address: int, size: int) -> bytes:
        """Read ``size`` bytes; raises MemoryAccessError when unmapped."""
        pass

    def read_unsigned(self, address: int, size: int) -> int:
        data = self.read_bytes(address, size)
        if len(data) != size:
            raise MemoryAccessError(
                f"Short read at 0x{address:x}", address=address, size=size
            )
        return int.from_bytes(data, self.endianness.byteorder, signed=False)

    def read_signed(self, address: int, size: Optional[int] = None) -> int:
        """Read a signed value, pointer-sized by default (ptrdiff_t)."""
        size = size or self.pointer_size
        data = self.read_bytes(address, size)
        if len(data) != size:
            raise MemoryAccessError(
                f"Short read at 0x{address:x}", address=address, size=size
            )
        return int.from_bytes(data, self.endianness.byteorder, signed=True)

    def read_pointer(self, address: int) -> int:
        return self.read_unsigned(address, self.pointer_size)

    def read_uint32(self, address: int) -> int:
        return self.read_unsigned(address, 4)

    def read_c_string(self, address: int, max_length: int = 1024) -> str:
        """
        Read a NUL-terminated ASCII string.

        Raises:
            MemoryAccessError: unmapped memory or no terminator within max_length
        """
        chunk = bytearray()
        while len(chunk) < max_length:
            byte = self.read_bytes(address + len(chunk), 1)
            if byte == b"\x00":
                return chunk.decode("ascii", errors="replace")
            chunk += byte
        raise MemoryAccessError(
            f"Unterminated string at 0x{address:x}", address=address, size=max_length
        )

    def is_mapped(self, address: int, size: int = 1) -> bool:
        try:
            return len(self.read_bytes(address, size)) == size
        except MemoryAccessError:
            return False

    # =========================================================================
    # Cross references
    # =========================================================================

    @abstractmethod
    def find_direct_references_to(self, address: int) -> Set[int]:
        """Addresses of pointer-aligned slots whose value equals ``address``."""
        pass

    @abstractmethod
    def get_recorded_references_to(self, address: int) -> Set[int]:
        """Source addresses of cross references recorded in the listing."""
        pass

    # =========================================================================
    # Listing
    # =========================================================================

    @abstractmethod
    def get_defined_data_at(self, address: int) -> Optional[DataItem]:
        """Data item starting exactly at ``address``."""
        pass

    @abstractmethod
    def get_data_containing(self, address: int) -> Optional[DataItem]:
        """Data item whose extent covers ``address``."""
        pass

    @abstractmethod
    def define_data(self, item: DataItem) -> None:
        """Persist a newly recognised data item."""
        pass

    # =========================================================================
    # Symbols and functions
    # =========================================================================

    @abstractmethod
    def lookup_child_symbols(self, namespace: str) -> List[Symbol]:
        """Symbols nested directly under ``namespace``."""
        pass

    @abstractmethod
    def lookup_symbols_by_name(self, name: str) -> List[Symbol]:
        """Symbols whose label or raw name equals ``name``."""
        pass

    @abstractmethod
    def get_symbols_at(self, address: int) -> List[Symbol]:
        """Symbols placed at ``address``."""
        pass

    @abstractmethod
    def resolve_function_at(self, address: int) -> Optional[FunctionRef]:
        """Function whose entry point is ``address``, if any."""
        pass
