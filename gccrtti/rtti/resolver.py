# -*- coding: utf-8 -*-
"""
gccrtti/rtti/resolver.py

Vtable resolution for a class type_info.

Fast path: the ``vtable`` symbol nested under the type's namespace.
Otherwise every pointer-aligned slot that references the typeinfo is a
candidate typeinfo slot of a vtable. A candidate is accepted when:

    1. the word before it (offset-to-top) is zero
    2. no conflicting typed data already occupies that word
    3. a VtableCandidate can be read there
    4. its first function table is a primary table, or a construction
       table that belongs to this class (see classify_function_tables)
"""

import logging
from typing import Iterable, Optional, Set

from ..core.config import VtableSearchConfig, default_config
from ..core.exceptions import InvalidVtableError, MemoryAccessError
from ..core.monitor import TaskMonitor, ensure_monitor
from ..core.program import ProgramView
from ..core.types import DataItem, DataKind
from .typeinfo import TypeDescriptor, read_type_descriptor
from .vtable import (
    ACCEPTED_KINDS,
    NO_VTABLE,
    ResolutionSource,
    ResolvedVtable,
    VtableCandidate,
    classify_function_tables,
)

logger = logging.getLogger(__name__)


class VtableResolver:
    """
    Finds the primary vtable of a class

    Usage:
        resolver = VtableResolver(program)
        vtable = resolver.resolve_vtable(0x4010)
        if vtable:
            print(hex(vtable.address))
    """

    def __init__(self, program: ProgramView, config: Optional[VtableSearchConfig] = None):
        self.program = program
        self.config = config or default_config.vtable

    # =========================================================================
    # Public API
    # =========================================================================

    def resolve_vtable(
        self,
        descriptor_address: int,
        monitor: Optional[TaskMonitor] = None
    ) -> ResolvedVtable:
        """
        Resolve the vtable for the type_info at ``descriptor_address``

        Returns:
            The resolved vtable, or NO_VTABLE

        Raises:
            InvalidTypeDescriptorError: no class type_info at that address
            AnalysisCancelledError: the monitor was cancelled
        """
        return self.resolve(read_type_descriptor(self.program, descriptor_address), monitor)

    def resolve(
        self,
        descriptor: TypeDescriptor,
        monitor: Optional[TaskMonitor] = None
    ) -> ResolvedVtable:
        """Resolve the vtable for an already validated descriptor"""
        if self.config.use_symbols:
            vtable = self._find_by_symbol(descriptor)
            if vtable:
                return self._accept(descriptor, vtable)

        references = sorted(self.gather_candidates(descriptor.address))
        owned = monitor is None
        if owned:
            monitor = ensure_monitor(None, f"Searching vtable for {descriptor}")
            monitor.initialize(len(references))
        return self._search(descriptor, references, monitor, owned)

    def gather_candidates(self, address: int) -> Set[int]:
        """
        Slots holding a direct pointer to ``address``

        References already recorded against a typeinfo defined in the
        listing come from unrelated records and are dropped, unless that
        leaves nothing.
        """
        references = self.program.find_direct_references_to(address)
        if self.program.get_defined_data_at(address) is not None:
            filtered = references - self.program.get_recorded_references_to(address)
            if filtered:
                return filtered
        return references

    # =========================================================================
    # Symbol fast path
    # =========================================================================

    def _find_by_symbol(self, descriptor: TypeDescriptor) -> ResolvedVtable:
        for symbol in self.program.lookup_child_symbols(descriptor.namespace):
            if symbol.name != self.config.vtable_symbol_name:
                continue
            try:
                candidate = VtableCandidate.build_at_vtable(
                    self.program, symbol.address, descriptor.address, self.config
                )
            except InvalidVtableError as e:
                logger.debug("Ignoring %s: %s", symbol.raw_name or symbol.full_name, e)
                break
            return ResolvedVtable(descriptor.address, candidate, ResolutionSource.SYMBOL)
        return NO_VTABLE

    # =========================================================================
    # Candidate search
    # =========================================================================

    def _has_trap(self) -> bool:
        return any(self.program.lookup_symbols_by_name(name) for name in self.config.pure_virtual_names)

    def _conflicting_data(self, address: int) -> bool:
        data = self.program.get_data_containing(address)
        if data is None:
            return False
        return not (data.is_undefined or data.is_pointer)

    def _search(
        self,
        descriptor: TypeDescriptor,
        references: Iterable[int],
        monitor: TaskMonitor,
        report_progress: bool = True
    ) -> ResolvedVtable:
        """Try ``references`` in order; only the monitor's creator reports progress"""
        ptr = self.program.pointer_size
        has_trap = self._has_trap()
        for reference in references:
            monitor.check_cancelled()
            if report_progress:
                monitor.increment_progress()

            header = reference - ptr
            try:
                offset_to_top = self.program.read_signed(header)
            except MemoryAccessError:
                continue
            if offset_to_top != 0:
                continue
            if self._conflicting_data(header):
                logger.debug("0x%x: typed data in the way", reference)
                continue

            try:
                candidate = VtableCandidate.build(
                    self.program, reference, descriptor.address, self.config
                )
            except InvalidVtableError as e:
                logger.debug("0x%x: %s", reference, e)
                continue

            kind = classify_function_tables(
                candidate.function_tables, self.config.pure_virtual_names, has_trap
            )
            if kind not in ACCEPTED_KINDS:
                logger.debug("0x%x: %s table, skipped", reference, kind.name.lower())
                continue

            return self._accept(
                descriptor,
                ResolvedVtable(descriptor.address, candidate, ResolutionSource.SEARCH)
            )

        logger.warning("Unable to find vtable for %s", descriptor)
        return NO_VTABLE

    def _accept(self, descriptor: TypeDescriptor, vtable: ResolvedVtable) -> ResolvedVtable:
        candidate = vtable.candidate
        logger.debug(
            "Vtable at 0x%x for typeinfo 0x%x (%s)",
            candidate.vtable_address, vtable.typeinfo_address, vtable.source.name.lower()
        )
        if self.config.define_data:
            self.program.define_data(DataItem(
                address=candidate.vtable_address,
                length=candidate.length,
                kind=DataKind.VTABLE,
                name=f"vtable_{descriptor.namespace}",
            ))
        return vtable


def resolve_vtable(
    program: ProgramView,
    descriptor_address: int,
    monitor: Optional[TaskMonitor] = None,
    config: Optional[VtableSearchConfig] = None
) -> ResolvedVtable:
    """Convenience wrapper around VtableResolver.resolve_vtable"""
    return VtableResolver(program, config).resolve_vtable(descriptor_address, monitor)
