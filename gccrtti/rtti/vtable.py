# -*- coding: utf-8 -*-
"""
gccrtti/rtti/vtable.py

Vtable candidates and resolved vtables.

A vtable group as emitted by GCC:

    [vbase/vcall offsets][offset-to-top = 0 ][typeinfo][fn][fn]...   primary table
    [vbase/vcall offsets][offset-to-top != 0][typeinfo][fn]...       secondary tables

Classes without virtual bases have no offset words. Groups are laid out
back to back, so a table ends where the next header begins.

A VtableCandidate is anchored at the typeinfo slot of its first table,
the address a direct reference to the typeinfo was found at.
"""

import logging
from dataclasses import dataclass
from enum import Enum, auto
from typing import Iterable, Optional, Tuple

from ..core.config import VtableSearchConfig
from ..core.exceptions import InvalidVtableError, MemoryAccessError
from ..core.program import ProgramView
from ..core.types import FunctionRef
from .typeinfo import is_type_descriptor

logger = logging.getLogger(__name__)

FunctionTable = Tuple[Optional[FunctionRef], ...]


class FunctionTableKind(Enum):
    """Classification of a candidate's first function table"""
    EMPTY = auto()                  # no slots to judge by
    PRIMARY = auto()                # first slot is a function
    OWN_CONSTRUCTION = auto()       # first slot empty, table belongs to this class
    FOREIGN_CONSTRUCTION = auto()   # first slot empty, table of another subobject


ACCEPTED_KINDS = frozenset({
    FunctionTableKind.EMPTY,
    FunctionTableKind.PRIMARY,
    FunctionTableKind.OWN_CONSTRUCTION,
})


def classify_function_tables(
    tables: Tuple[FunctionTable, ...],
    trap_names: Iterable[str],
    has_trap: bool
) -> FunctionTableKind:
    """
    Classify the first function table of a candidate.

    A first slot that is empty marks a construction vtable. It is this
    class's own when the pure-virtual trap shows up among its entries; an
    image without any trap function accepts any resolved entry instead.

    Args:
        tables: Function tables of the candidate
        trap_names: Names of the pure-virtual trap function
        has_trap: Whether the image defines a trap function at all
    """
    if not tables or not tables[0]:
        return FunctionTableKind.EMPTY

    first = tables[0]
    if first[0] is not None:
        return FunctionTableKind.PRIMARY

    trap_names = frozenset(trap_names)
    for function in first:
        if function is None:
            continue
        if not has_trap or function.name in trap_names:
            return FunctionTableKind.OWN_CONSTRUCTION
    return FunctionTableKind.FOREIGN_CONSTRUCTION


@dataclass(frozen=True)
class VtableCandidate:
    """Immutable snapshot of a hypothesised vtable"""
    address: int                    # typeinfo slot of the first table
    typeinfo_address: int
    offset_to_top: int
    function_tables: Tuple[FunctionTable, ...]
    pointer_size: int
    end_address: int
    prefix_words: int = 0           # vbase/vcall offsets before offset-to-top

    @property
    def vtable_address(self) -> int:
        """Start of the vtable, including any offset words"""
        return self.address - self.pointer_size * (1 + self.prefix_words)

    @property
    def length(self) -> int:
        return self.end_address - self.vtable_address

    @property
    def slot_count(self) -> int:
        return sum(len(table) for table in self.function_tables)

    @classmethod
    def build(
        cls,
        program: ProgramView,
        address: int,
        typeinfo_address: int,
        config: Optional[VtableSearchConfig] = None,
        prefix_words: int = 0
    ) -> "VtableCandidate":
        """
        Read the vtable group whose first typeinfo slot is ``address``

        ``prefix_words`` counts the offset words known to precede the
        offset-to-top field; the candidate search cannot see them and
        passes 0.

        Raises:
            InvalidVtableError: the slot does not point to the typeinfo, or
                the header is unreadable
        """
        config = config or VtableSearchConfig()
        ptr = program.pointer_size
        try:
            if program.read_pointer(address) != typeinfo_address:
                raise InvalidVtableError(
                    f"Typeinfo slot at 0x{address:x} does not reference 0x{typeinfo_address:x}",
                    address=address,
                )
            offset_to_top = program.read_signed(address - ptr)
        except MemoryAccessError as e:
            raise InvalidVtableError(
                f"Unreadable vtable header at 0x{address:x}: {e.message}", address=address
            )

        tables, end = _read_function_tables(program, address + ptr, typeinfo_address, config)
        return cls(
            address=address,
            typeinfo_address=typeinfo_address,
            offset_to_top=offset_to_top,
            function_tables=tables,
            pointer_size=ptr,
            end_address=end,
            prefix_words=prefix_words,
        )

    @classmethod
    def build_at_vtable(
        cls,
        program: ProgramView,
        vtable_address: int,
        typeinfo_address: int,
        config: Optional[VtableSearchConfig] = None
    ) -> "VtableCandidate":
        """
        Same as build() but anchored at the start of the vtable

        The first ``[0][typeinfo]`` pair within ``max_prefix_words`` offset
        words of ``vtable_address`` is taken as the primary header.
        """
        config = config or VtableSearchConfig()
        ptr = program.pointer_size
        for prefix_words in range(config.max_prefix_words + 1):
            header = vtable_address + prefix_words * ptr
            offset_to_top = _try_read(program, header)
            if offset_to_top is None or _is_function_slot(program, offset_to_top):
                break
            if offset_to_top == 0 and _try_read(program, header + ptr) == typeinfo_address:
                return cls.build(program, header + ptr, typeinfo_address, config, prefix_words)
        raise InvalidVtableError(
            f"No header for typeinfo 0x{typeinfo_address:x} at vtable 0x{vtable_address:x}",
            address=vtable_address,
        )


def _try_read(program: ProgramView, address: int, signed: bool = False) -> Optional[int]:
    try:
        return program.read_signed(address) if signed else program.read_pointer(address)
    except MemoryAccessError:
        return None


def _is_function_slot(program: ProgramView, value: int) -> bool:
    return value != 0 and program.resolve_function_at(value) is not None


def _find_header(
    program: ProgramView,
    start: int,
    typeinfo_address: int,
    limit: int
) -> Tuple[Optional[int], bool]:
    """
    Look for a table header among the offset words at ``start``

    A header is either ``[offset < 0][typeinfo]``, a secondary table of
    the same group, or ``[0][any class typeinfo]``, the next vtable. Up to
    ``limit`` vbase/vcall offset words may precede it.

    Returns:
        (header address, whether it belongs to this group), or (None, False)
    """
    ptr = program.pointer_size
    position = start
    for _ in range(limit + 1):
        word = _try_read(program, position)
        if word is None or _is_function_slot(program, word):
            break
        offset_to_top = program.read_signed(position)
        typeinfo = _try_read(program, position + ptr)
        if typeinfo:
            # subobjects sit after the top of the object
            if offset_to_top < 0 and typeinfo == typeinfo_address:
                return position, True
            if offset_to_top == 0 and (
                typeinfo == typeinfo_address or is_type_descriptor(program, typeinfo)
            ):
                return position, False
        position += ptr
    return None, False


def _read_function_tables(
    program: ProgramView,
    start: int,
    typeinfo_address: int,
    config: VtableSearchConfig
) -> Tuple[Tuple[FunctionTable, ...], int]:
    """
    Rows of slots from ``start``; returns the rows and the end address

    A row ends at the first word that is neither a function nor an empty
    slot, or at an empty slot that opens the offset words of a header.
    Only headers of this group continue the walk.
    """
    ptr = program.pointer_size
    limit = config.max_prefix_words
    tables = []
    position = start
    while len(tables) < config.max_function_tables:
        row = []
        header, own = None, False
        while len(row) < config.max_function_slots:
            value = _try_read(program, position)
            if value is None:
                break
            if value != 0:
                function = program.resolve_function_at(value)
                if function is not None:
                    row.append(function)
                    position += ptr
                    continue
            header, own = _find_header(program, position, typeinfo_address, limit)
            if header is not None or value != 0:
                break
            row.append(None)
            position += ptr
        else:
            header, own = _find_header(program, position, typeinfo_address, limit)
        tables.append(tuple(row))

        if not own:
            break
        position = header + 2 * ptr
    return tuple(tables), position


class ResolutionSource(Enum):
    """How a vtable was found"""
    SYMBOL = auto()
    SEARCH = auto()
    NONE = auto()


@dataclass(frozen=True)
class ResolvedVtable:
    """
    A vtable bound to its class

    NO_VTABLE stands for "not found"; it is falsy and has no tables, so
    callers never have to test for None.
    """
    typeinfo_address: Optional[int]
    candidate: Optional[VtableCandidate]
    source: ResolutionSource

    @property
    def is_valid(self) -> bool:
        return self.candidate is not None

    def __bool__(self) -> bool:
        return self.is_valid

    @property
    def address(self) -> Optional[int]:
        return self.candidate.vtable_address if self.candidate else None

    @property
    def function_tables(self) -> Tuple[FunctionTable, ...]:
        return self.candidate.function_tables if self.candidate else ()

    @property
    def functions(self) -> Tuple[FunctionRef, ...]:
        """Resolved entries of every table, in slot order"""
        return tuple(
            function
            for table in self.function_tables
            for function in table
            if function is not None
        )


NO_VTABLE = ResolvedVtable(typeinfo_address=None, candidate=None, source=ResolutionSource.NONE)
