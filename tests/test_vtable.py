"""Vtable candidates and function table classification."""

import pytest

from gccrtti.core.config import VtableSearchConfig
from gccrtti.core.exceptions import InvalidVtableError
from gccrtti.core.types import FunctionRef
from gccrtti.rtti.vtable import (
    NO_VTABLE,
    FunctionTableKind,
    ResolutionSource,
    ResolvedVtable,
    VtableCandidate,
    classify_function_tables,
)

from conftest import TERMINATOR

TRAP = FunctionRef(0x1000, "__cxa_pure_virtual")
FUNC = FunctionRef(0x1010, "_ZN3Foo3runEv")
OTHER = FunctionRef(0x1020)
TRAP_NAMES = ["__cxa_pure_virtual"]


# =============================================================================
# classify_function_tables
# =============================================================================

@pytest.mark.parametrize("tables", [(), ((),)])
def test_no_slots_is_empty(tables):
    assert classify_function_tables(tables, TRAP_NAMES, True) is FunctionTableKind.EMPTY


def test_first_slot_present_is_primary():
    tables = ((FUNC, None, OTHER),)
    assert classify_function_tables(tables, TRAP_NAMES, True) is FunctionTableKind.PRIMARY


def test_construction_table_with_trap_is_own():
    tables = ((None, TRAP),)
    assert classify_function_tables(tables, TRAP_NAMES, True) is FunctionTableKind.OWN_CONSTRUCTION


def test_construction_table_without_trap_entry_is_foreign():
    tables = ((None, FUNC, OTHER),)
    assert classify_function_tables(tables, TRAP_NAMES, True) is FunctionTableKind.FOREIGN_CONSTRUCTION


def test_construction_table_in_image_without_trap_is_own():
    tables = ((None, FUNC),)
    assert classify_function_tables(tables, TRAP_NAMES, False) is FunctionTableKind.OWN_CONSTRUCTION


def test_construction_table_with_only_empty_slots_is_foreign():
    tables = ((None, None),)
    assert classify_function_tables(tables, TRAP_NAMES, False) is FunctionTableKind.FOREIGN_CONSTRUCTION


def test_only_first_table_is_classified():
    tables = ((None, OTHER), (TRAP,))
    assert classify_function_tables(tables, TRAP_NAMES, True) is FunctionTableKind.FOREIGN_CONSTRUCTION


# =============================================================================
# VtableCandidate
# =============================================================================

def test_build_reads_sub_tables(any_layout):
    ptr = any_layout.ptr
    typeinfo = any_layout.typeinfo("3Foo")
    f1 = any_layout.function("f1")
    f2 = any_layout.function("f2")
    f3 = any_layout.function("f3")
    vtable = any_layout.vtable(typeinfo, [[f1, 0, f2], [f3]])

    candidate = VtableCandidate.build(any_layout.image, vtable + ptr, typeinfo)

    assert candidate.vtable_address == vtable
    assert candidate.offset_to_top == 0
    assert [len(table) for table in candidate.function_tables] == [3, 1]
    assert candidate.function_tables[0][1] is None
    assert candidate.function_tables[0][0].address == f1
    assert candidate.function_tables[1][0].name == "f3"
    assert candidate.slot_count == 4
    # header, 3 slots, secondary header, 1 slot
    assert candidate.length == 8 * ptr
    assert any_layout.image.read_pointer(candidate.end_address) == TERMINATOR


def test_build_at_vtable(layout):
    typeinfo = layout.typeinfo("3Foo")
    f1 = layout.function("f1")
    vtable = layout.vtable(typeinfo, [[f1]])

    candidate = VtableCandidate.build_at_vtable(layout.image, vtable, typeinfo)

    assert candidate.address == vtable + layout.ptr
    assert candidate.function_tables == ((FunctionRef(f1, "f1"),),)


def test_group_ends_at_next_vtable(any_layout):
    ptr = any_layout.ptr
    foo = any_layout.typeinfo("3Foo")
    bar = any_layout.typeinfo("3Bar")
    f1 = any_layout.function("f1")
    first = any_layout.vtable(foo, [[f1]], terminate=False)
    second = any_layout.vtable(bar, [[any_layout.function("f2")]])

    candidate = VtableCandidate.build_at_vtable(any_layout.image, first, foo)

    assert candidate.function_tables == ((FunctionRef(f1, "f1"),),)
    assert candidate.end_address == second
    assert candidate.length == 3 * ptr


def test_group_ends_at_offset_words_of_next_vtable(layout):
    foo = layout.typeinfo("3Foo")
    bar = layout.typeinfo("3Bar")
    f1 = layout.function("f1")
    first = layout.vtable(foo, [[f1]], terminate=False)
    second = layout.vtable(bar, [[layout.function()]], prefixes=[[16, 0]])

    candidate = VtableCandidate.build_at_vtable(layout.image, first, foo)

    assert candidate.slot_count == 1
    assert candidate.end_address == second


def test_offset_words_before_secondary_table(layout):
    typeinfo = layout.typeinfo("1D", kind="vmi", bases=[(layout.typeinfo("1A"), 0x3)])
    f1 = layout.function("f1")
    thunk = layout.function("thunk")
    vtable = layout.vtable(typeinfo, [[f1], [0, thunk]], prefixes=[[], [-16, 0, -16]])

    candidate = VtableCandidate.build_at_vtable(layout.image, vtable, typeinfo)

    assert [len(table) for table in candidate.function_tables] == [1, 2]
    assert candidate.function_tables[1] == (None, FunctionRef(thunk, "thunk"))
    assert layout.image.read_pointer(candidate.end_address) == TERMINATOR


def test_build_at_vtable_skips_offset_words(any_layout):
    ptr = any_layout.ptr
    typeinfo = any_layout.typeinfo("1D")
    f1 = any_layout.function("f1")
    vtable = any_layout.vtable(typeinfo, [[f1]], prefixes=[[2 * ptr, ptr, 0]])

    candidate = VtableCandidate.build_at_vtable(any_layout.image, vtable, typeinfo)

    assert candidate.prefix_words == 3
    assert candidate.address == vtable + 4 * ptr
    assert candidate.vtable_address == vtable
    assert candidate.function_tables == ((FunctionRef(f1, "f1"),),)
    assert candidate.length == 6 * ptr


def test_build_at_vtable_offset_word_limit(layout):
    typeinfo = layout.typeinfo("1D")
    vtable = layout.vtable(typeinfo, [[layout.function()]], prefixes=[[16, 8]])
    config = VtableSearchConfig(max_prefix_words=1)

    with pytest.raises(InvalidVtableError):
        VtableCandidate.build_at_vtable(layout.image, vtable, typeinfo, config)


def test_row_stops_at_non_function_word(layout):
    typeinfo = layout.typeinfo("3Foo")
    f1 = layout.function("f1")
    vtable = layout.vtable(typeinfo, [[f1, 0]])
    # the second slot now holds a data pointer
    layout.word(vtable + 3 * layout.ptr, typeinfo)

    candidate = VtableCandidate.build_at_vtable(layout.image, vtable, typeinfo)

    assert candidate.function_tables == ((FunctionRef(f1, "f1"),),)


def test_slot_limit(layout):
    typeinfo = layout.typeinfo("3Foo")
    functions = [layout.function() for _ in range(6)]
    vtable = layout.vtable(typeinfo, [functions])
    config = VtableSearchConfig(max_function_slots=4)

    candidate = VtableCandidate.build_at_vtable(layout.image, vtable, typeinfo, config)

    assert len(candidate.function_tables[0]) == 4


def test_build_rejects_wrong_typeinfo_slot(layout):
    typeinfo = layout.typeinfo("3Foo")
    other = layout.typeinfo("3Bar")
    vtable = layout.vtable(typeinfo, [[layout.function()]])

    with pytest.raises(InvalidVtableError):
        VtableCandidate.build_at_vtable(layout.image, vtable, other)


def test_build_rejects_unreadable_header(layout):
    typeinfo = layout.typeinfo("3Foo")

    with pytest.raises(InvalidVtableError):
        VtableCandidate.build(layout.image, 0x100000, typeinfo)


# =============================================================================
# ResolvedVtable
# =============================================================================

def test_no_vtable_sentinel():
    assert not NO_VTABLE
    assert not NO_VTABLE.is_valid
    assert NO_VTABLE.address is None
    assert NO_VTABLE.function_tables == ()
    assert NO_VTABLE.functions == ()
    assert NO_VTABLE.source is ResolutionSource.NONE


def test_resolved_vtable_functions(layout):
    typeinfo = layout.typeinfo("3Foo")
    f1 = layout.function("f1")
    f2 = layout.function("f2")
    vtable = layout.vtable(typeinfo, [[f1, 0], [f2]])
    candidate = VtableCandidate.build_at_vtable(layout.image, vtable, typeinfo)

    resolved = ResolvedVtable(typeinfo, candidate, ResolutionSource.SEARCH)

    assert resolved
    assert resolved.address == vtable
    assert [function.address for function in resolved.functions] == [f1, f2]
