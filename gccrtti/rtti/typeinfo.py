# -*- coding: utf-8 -*-
"""
gccrtti/rtti/typeinfo.py

Class type_info records of the Itanium C++ ABI.

Layouts (one word = pointer size):
    __class_type_info       [vptr][name]
    __si_class_type_info    [vptr][name][base typeinfo]
    __vmi_class_type_info   [vptr][name][u32 flags][u32 base_count]
                            base_count x [base typeinfo][long offset_flags]

The vptr points two words into the libstdc++ vtable of the record's
type_info class, which is how the three kinds are told apart.
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Optional, Tuple

from ..core.exceptions import InvalidTypeDescriptorError, MemoryAccessError
from ..core.program import ProgramView
from ..core.utils import namespace_of
from .constants import (
    BASE_OFFSET_SHIFT,
    BASE_PUBLIC_MASK,
    BASE_VIRTUAL_MASK,
    CLASS_TYPE_INFO_NAMESPACE,
    MAX_TYPE_NAME_LENGTH,
    SI_CLASS_TYPE_INFO_NAMESPACE,
    TYPEINFO_VPTR_WORDS,
    VMI_CLASS_TYPE_INFO_NAMESPACE,
    VMI_DIAMOND_SHAPED,
    VMI_NON_DIAMOND_REPEAT,
    VTABLE_SYMBOL_NAME,
)

logger = logging.getLogger(__name__)

MAX_BASE_COUNT = 1024
_TYPE_NAME_RE = re.compile(r"^\*?[A-Za-z0-9_$.]+$")


class TypeInfoKind(Enum):
    """Which libstdc++ type_info class describes the record"""
    CLASS = auto()          # no bases
    SI_CLASS = auto()       # single public non-virtual base at offset 0
    VMI_CLASS = auto()      # anything else


KIND_BY_NAMESPACE = {
    CLASS_TYPE_INFO_NAMESPACE: TypeInfoKind.CLASS,
    SI_CLASS_TYPE_INFO_NAMESPACE: TypeInfoKind.SI_CLASS,
    VMI_CLASS_TYPE_INFO_NAMESPACE: TypeInfoKind.VMI_CLASS,
}


@dataclass(frozen=True)
class BaseClassRef:
    """Link to an immediate base, by the address of its typeinfo"""
    address: int
    offset: int = 0
    is_virtual: bool = False
    is_public: bool = True


@dataclass(frozen=True)
class TypeDescriptor:
    """
    A validated class type_info record

    Equality and hashing use the address only. Bases are kept as
    addresses; TypeRegistry turns them into descriptors.
    """
    address: int
    name: str = field(compare=False)
    kind: TypeInfoKind = field(compare=False)
    bases: Tuple[BaseClassRef, ...] = field(default=(), compare=False)
    flags: int = field(default=0, compare=False)
    size: int = field(default=0, compare=False)

    @property
    def namespace(self) -> str:
        """Key under which the type's special symbols are nested"""
        return namespace_of(self.name)

    @property
    def is_local(self) -> bool:
        return self.name.startswith("*")

    @property
    def has_parent(self) -> bool:
        return bool(self.bases)

    @property
    def primary_base_address(self) -> Optional[int]:
        return self.bases[0].address if self.bases else None

    @property
    def has_repeated_bases(self) -> bool:
        """vmi flag: some base class occurs more than once, not as a diamond"""
        return bool(self.flags & VMI_NON_DIAMOND_REPEAT)

    @property
    def is_diamond_shaped(self) -> bool:
        """vmi flag: a virtual base is reached along more than one path"""
        return bool(self.flags & VMI_DIAMOND_SHAPED)

    def __str__(self) -> str:
        return self.namespace


def _kind_at(program: ProgramView, vptr: int) -> Optional[TypeInfoKind]:
    offset = TYPEINFO_VPTR_WORDS * program.pointer_size
    # symbols usually sit on the vtable start, some tools label the vptr target
    for address in (vptr - offset, vptr):
        for symbol in program.get_symbols_at(address):
            if symbol.name == VTABLE_SYMBOL_NAME and symbol.namespace in KIND_BY_NAMESPACE:
                return KIND_BY_NAMESPACE[symbol.namespace]
    return None


def read_type_descriptor(program: ProgramView, address: int) -> TypeDescriptor:
    """
    Read and validate the class type_info record at ``address``

    Raises:
        InvalidTypeDescriptorError: no class type_info at that address
    """
    ptr = program.pointer_size
    try:
        kind = _kind_at(program, program.read_pointer(address))
        if kind is None:
            raise InvalidTypeDescriptorError(
                f"Invalid ClassTypeInfo at 0x{address:x}", address=address
            )

        name = program.read_c_string(program.read_pointer(address + ptr), MAX_TYPE_NAME_LENGTH)
        if not _TYPE_NAME_RE.match(name):
            raise InvalidTypeDescriptorError(
                f"Invalid type name at 0x{address:x}", address=address, type_name=name
            )

        if kind is TypeInfoKind.CLASS:
            return TypeDescriptor(address, name, kind, size=2 * ptr)

        if kind is TypeInfoKind.SI_CLASS:
            base = BaseClassRef(program.read_pointer(address + 2 * ptr))
            return TypeDescriptor(address, name, kind, bases=(base,), size=3 * ptr)

        flags = program.read_uint32(address + 2 * ptr)
        count = program.read_uint32(address + 2 * ptr + 4)
        if count > MAX_BASE_COUNT:
            raise InvalidTypeDescriptorError(
                f"Implausible base count {count} at 0x{address:x}", address=address
            )
        entries = address + 2 * ptr + 8
        bases = []
        for index in range(count):
            entry = entries + index * 2 * ptr
            offset_flags = program.read_signed(entry + ptr)
            bases.append(BaseClassRef(
                address=program.read_pointer(entry),
                offset=offset_flags >> BASE_OFFSET_SHIFT,
                is_virtual=bool(offset_flags & BASE_VIRTUAL_MASK),
                is_public=bool(offset_flags & BASE_PUBLIC_MASK),
            ))
        return TypeDescriptor(
            address, name, kind,
            bases=tuple(bases), flags=flags, size=entries + count * 2 * ptr - address,
        )
    except MemoryAccessError as e:
        raise InvalidTypeDescriptorError(
            f"Invalid ClassTypeInfo at 0x{address:x}: {e.message}", address=address
        )


def is_type_descriptor(program: ProgramView, address: int) -> bool:
    """True if ``address`` holds a readable class type_info record"""
    try:
        read_type_descriptor(program, address)
    except InvalidTypeDescriptorError:
        return False
    return True
