"""Vtable resolution."""

import logging

import pytest

from gccrtti.core.config import VtableSearchConfig
from gccrtti.core.exceptions import AnalysisCancelledError, InvalidTypeDescriptorError
from gccrtti.core.monitor import TaskMonitor
from gccrtti.core.types import DataItem, DataKind
from gccrtti.rtti.resolver import VtableResolver, resolve_vtable
from gccrtti.rtti.vtable import NO_VTABLE, ResolutionSource


def test_symbol_fast_path_skips_reference_scan(layout, monkeypatch):
    typeinfo = layout.typeinfo("3Foo")
    f1 = layout.function("f1")
    vtable = layout.vtable(typeinfo, [[f1]], symbol="3Foo")

    def no_scan(address):
        raise AssertionError("reference scan used")

    monkeypatch.setattr(layout.image, "find_direct_references_to", no_scan)

    result = resolve_vtable(layout.image, typeinfo)

    assert result.source is ResolutionSource.SYMBOL
    assert result.address == vtable
    assert result.typeinfo_address == typeinfo


def test_symbol_path_disabled(layout):
    typeinfo = layout.typeinfo("3Foo")
    vtable = layout.vtable(typeinfo, [[layout.function()]], symbol="3Foo")
    config = VtableSearchConfig(use_symbols=False)

    result = resolve_vtable(layout.image, typeinfo, config=config)

    assert result.source is ResolutionSource.SEARCH
    assert result.address == vtable


def test_symbol_fast_path_with_virtual_base_offsets(layout, monkeypatch):
    base = layout.typeinfo("1A")
    typeinfo = layout.typeinfo("1D", kind="vmi", bases=[(base, (-24 << 8) | 3)])
    f1 = layout.function("f1")
    thunk = layout.function("thunk")
    vtable = layout.vtable(
        typeinfo, [[f1], [thunk]], prefixes=[[16, 8], [-16]], symbol="1D", terminate=False
    )
    layout.vtable(base, [[layout.function()]])

    def no_scan(address):
        raise AssertionError("reference scan used")

    monkeypatch.setattr(layout.image, "find_direct_references_to", no_scan)

    result = resolve_vtable(layout.image, typeinfo)

    assert result.source is ResolutionSource.SYMBOL
    assert result.address == vtable
    assert [len(table) for table in result.function_tables] == [1, 1]


def test_search_finds_vtable_with_virtual_base_offsets(layout):
    typeinfo = layout.typeinfo("1D")
    vtable = layout.vtable(typeinfo, [[layout.function()]], prefixes=[[16, 8]], symbol="1D")
    config = VtableSearchConfig(use_symbols=False)

    result = resolve_vtable(layout.image, typeinfo, config=config)

    assert result.source is ResolutionSource.SEARCH
    assert result.address == vtable + 2 * layout.ptr


def test_offset_word_limit_falls_back_to_search(layout):
    typeinfo = layout.typeinfo("1D")
    vtable = layout.vtable(typeinfo, [[layout.function()]], prefixes=[[16, 8]], symbol="1D")
    config = VtableSearchConfig(max_prefix_words=1)

    result = resolve_vtable(layout.image, typeinfo, config=config)

    assert result.source is ResolutionSource.SEARCH
    assert result.address == vtable + 2 * layout.ptr


def test_back_to_back_vtables(any_layout):
    foo = any_layout.typeinfo("3Foo")
    bar = any_layout.typeinfo("3Bar")
    f1 = any_layout.function("f1")
    f2 = any_layout.function("f2")
    first = any_layout.vtable(foo, [[f1]], terminate=False)
    second = any_layout.vtable(bar, [[f2]], terminate=False)
    any_layout.vtable(foo, [[any_layout.function()]], offsets=[8])

    foo_vtable = resolve_vtable(any_layout.image, foo)
    bar_vtable = resolve_vtable(any_layout.image, bar)

    assert foo_vtable.address == first
    assert [[function.name for function in table] for table in foo_vtable.function_tables] == [["f1"]]
    assert foo_vtable.candidate.end_address == second
    assert bar_vtable.address == second
    assert [function.name for function in bar_vtable.functions] == ["f2"]


def test_search_without_symbols(any_layout):
    typeinfo = any_layout.typeinfo("3Foo")
    f1 = any_layout.function("f1")
    f2 = any_layout.function("f2")
    vtable = any_layout.vtable(typeinfo, [[f1, f2]])

    result = resolve_vtable(any_layout.image, typeinfo)

    assert result
    assert result.source is ResolutionSource.SEARCH
    assert result.address == vtable
    assert [function.name for function in result.functions] == ["f1", "f2"]


def test_nonzero_offset_to_top_is_never_accepted(layout):
    typeinfo = layout.typeinfo("3Foo")
    layout.vtable(typeinfo, [[layout.function()]], offsets=[16])

    assert resolve_vtable(layout.image, typeinfo) is NO_VTABLE


def test_secondary_record_before_primary(any_layout):
    typeinfo = any_layout.typeinfo("3Foo")
    f1 = any_layout.function()
    f2 = any_layout.function()
    any_layout.vtable(typeinfo, [[f1]], offsets=[2 * any_layout.ptr])
    any_layout.skip()
    vtable = any_layout.vtable(typeinfo, [[f2]])

    result = resolve_vtable(any_layout.image, typeinfo)

    assert result.address == vtable


def test_group_with_secondary_table(layout):
    base = layout.typeinfo("4Base")
    typeinfo = layout.typeinfo("7Derived", kind="vmi", bases=[base, (base, (16 << 8) | 2)])
    f1 = layout.function("f1")
    thunk = layout.function("thunk")
    vtable = layout.vtable(typeinfo, [[f1], [thunk]])

    result = resolve_vtable(layout.image, typeinfo)

    assert result.address == vtable
    assert len(result.function_tables) == 2


def test_typed_data_blocks_candidate(layout):
    typeinfo = layout.typeinfo("3Foo")
    blocked = layout.vtable(typeinfo, [[layout.function()]])
    layout.skip()
    vtable = layout.vtable(typeinfo, [[layout.function()]])
    layout.image.define_data(DataItem(blocked, layout.ptr, DataKind.INTEGER, "counter"))

    result = resolve_vtable(layout.image, typeinfo)

    assert result.address == vtable


@pytest.mark.parametrize("kind", [DataKind.POINTER, DataKind.UNDEFINED])
def test_pointer_or_undefined_data_does_not_block(layout, kind):
    typeinfo = layout.typeinfo("3Foo")
    vtable = layout.vtable(typeinfo, [[layout.function()]])
    layout.image.define_data(DataItem(vtable, layout.ptr, kind))

    assert resolve_vtable(layout.image, typeinfo).address == vtable


def test_own_construction_vtable_is_accepted(layout):
    typeinfo = layout.typeinfo("3Foo")
    trap = layout.pure_virtual()
    construction = layout.vtable(typeinfo, [[0, trap]])
    layout.skip()
    layout.vtable(typeinfo, [[layout.function()]])

    assert resolve_vtable(layout.image, typeinfo).address == construction


def test_foreign_construction_vtable_is_skipped(layout):
    typeinfo = layout.typeinfo("3Foo")
    layout.pure_virtual()
    layout.vtable(typeinfo, [[0, layout.function("other")]])
    layout.skip()
    vtable = layout.vtable(typeinfo, [[layout.function()]])

    assert resolve_vtable(layout.image, typeinfo).address == vtable


def test_construction_vtable_without_trap_in_image(layout):
    typeinfo = layout.typeinfo("3Foo")
    construction = layout.vtable(typeinfo, [[0, layout.function()]])

    assert resolve_vtable(layout.image, typeinfo).address == construction


def test_not_found_returns_sentinel(layout, caplog):
    typeinfo = layout.typeinfo("3Foo")

    with caplog.at_level(logging.WARNING, logger="gccrtti"):
        result = resolve_vtable(layout.image, typeinfo)

    assert result is NO_VTABLE
    assert "Unable to find vtable for 3Foo" in caplog.text


def test_invalid_descriptor_raises(layout):
    with pytest.raises(InvalidTypeDescriptorError):
        resolve_vtable(layout.image, layout.string("junk"))


def test_cancelled_monitor(layout):
    typeinfo = layout.typeinfo("3Foo")
    layout.vtable(typeinfo, [[layout.function()]])
    monitor = TaskMonitor()
    monitor.cancel()

    with pytest.raises(AnalysisCancelledError):
        resolve_vtable(layout.image, typeinfo, monitor)


def test_shared_monitor_keeps_caller_progress(layout):
    typeinfo = layout.typeinfo("3Foo")
    layout.vtable(typeinfo, [[layout.function()]], offsets=[8])
    vtable = layout.vtable(typeinfo, [[layout.function()]])
    monitor = TaskMonitor("batch")
    monitor.initialize(10)
    monitor.increment_progress(3)

    result = resolve_vtable(layout.image, typeinfo, monitor)

    assert result.address == vtable
    assert (monitor.message, monitor.maximum, monitor.progress) == ("batch", 10, 3)


def test_own_monitor_counts_every_reference(layout, monkeypatch):
    typeinfo = layout.typeinfo("3Foo")
    layout.vtable(typeinfo, [[layout.function()]], offsets=[8])
    layout.vtable(typeinfo, [[layout.function()]])
    created = []
    original = TaskMonitor.__init__

    def recording_init(self, message=""):
        original(self, message)
        created.append(self)

    monkeypatch.setattr(TaskMonitor, "__init__", recording_init)

    resolve_vtable(layout.image, typeinfo)

    assert len(created) == 1
    assert created[0].message == "Searching vtable for 3Foo"
    assert (created[0].maximum, created[0].progress) == (2, 2)


# =============================================================================
# Candidate gathering
# =============================================================================

def _two_vtables(layout):
    typeinfo = layout.typeinfo("3Foo")
    first = layout.vtable(typeinfo, [[layout.function()]])
    layout.skip()
    second = layout.vtable(typeinfo, [[layout.function()]])
    layout.image.define_data(DataItem(typeinfo, 2 * layout.ptr, DataKind.TYPEINFO))
    return typeinfo, first, second


def test_recorded_references_are_filtered(layout):
    typeinfo, first, second = _two_vtables(layout)
    layout.image.add_reference(first + layout.ptr, typeinfo)

    resolver = VtableResolver(layout.image)

    assert resolver.gather_candidates(typeinfo) == {second + layout.ptr}
    assert resolver.resolve_vtable(typeinfo).address == second


def test_filter_falls_back_when_nothing_remains(layout):
    typeinfo, first, second = _two_vtables(layout)
    layout.image.add_reference(first + layout.ptr, typeinfo)
    layout.image.add_reference(second + layout.ptr, typeinfo)

    resolver = VtableResolver(layout.image)

    assert resolver.gather_candidates(typeinfo) == {first + layout.ptr, second + layout.ptr}
    assert resolver.resolve_vtable(typeinfo).address == first


def test_recorded_references_ignored_for_undefined_typeinfo(layout):
    typeinfo = layout.typeinfo("3Foo")
    vtable = layout.vtable(typeinfo, [[layout.function()]])
    layout.image.add_reference(vtable + layout.ptr, typeinfo)

    resolver = VtableResolver(layout.image)

    assert resolver.gather_candidates(typeinfo) == {vtable + layout.ptr}


# =============================================================================
# Listing updates
# =============================================================================

def test_define_data_records_vtable(layout):
    typeinfo = layout.typeinfo("3Foo")
    vtable = layout.vtable(typeinfo, [[layout.function(), layout.function()]])
    config = VtableSearchConfig(define_data=True)

    result = resolve_vtable(layout.image, typeinfo, config=config)

    item = layout.image.get_defined_data_at(vtable)
    assert item is not None
    assert item.kind is DataKind.VTABLE
    assert item.name == "vtable_3Foo"
    assert item.length == result.candidate.length == 4 * layout.ptr


def test_listing_untouched_by_default(layout):
    typeinfo = layout.typeinfo("3Foo")
    vtable = layout.vtable(typeinfo, [[layout.function()]])

    resolve_vtable(layout.image, typeinfo)

    assert layout.image.get_defined_data_at(vtable) is None
