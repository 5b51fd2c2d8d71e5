# -*- coding: utf-8 -*-
"""
gccrtti/rtti/registry.py

Analysis session over one program image: caches type descriptors by
address, follows base links through that cache and binds at most one
vtable to each descriptor.
"""

import logging
import threading
from typing import Dict, Iterable, Iterator, List, Optional, Union

from ..core.config import GccRttiConfig, default_config
from ..core.exceptions import InvalidTypeDescriptorError
from ..core.monitor import TaskMonitor, ensure_monitor
from ..core.program import ProgramView
from .hierarchy import sequence_classes
from .resolver import VtableResolver
from .typeinfo import TypeDescriptor, read_type_descriptor
from .vtable import ResolvedVtable

logger = logging.getLogger(__name__)


class TypeRegistry:
    """
    Descriptors and vtables discovered during one analysis pass

    Usage:
        registry = TypeRegistry(program)
        for address in typeinfo_addresses:
            registry.vtable_for(address)
        for descriptor in registry.sequence():
            ...
    """

    def __init__(self, program: ProgramView, config: Optional[GccRttiConfig] = None):
        self.program = program
        self.config = config or default_config
        self.resolver = VtableResolver(program, self.config.vtable)

        self._descriptors: Dict[int, TypeDescriptor] = {}
        self._vtables: Dict[int, ResolvedVtable] = {}
        # one resolution at a time per image
        self._lock = threading.RLock()

    # =========================================================================
    # Descriptors
    # =========================================================================

    def get(self, address: int) -> TypeDescriptor:
        """
        Descriptor at ``address``, read on first use

        Raises:
            InvalidTypeDescriptorError: no class type_info at that address
        """
        with self._lock:
            descriptor = self._descriptors.get(address)
            if descriptor is None:
                descriptor = read_type_descriptor(self.program, address)
                self._descriptors[address] = descriptor
            return descriptor

    def try_get(self, address: int) -> Optional[TypeDescriptor]:
        try:
            return self.get(address)
        except InvalidTypeDescriptorError as e:
            logger.debug("No descriptor at 0x%x: %s", address, e)
            return None

    def __contains__(self, address: int) -> bool:
        return address in self._descriptors

    def __iter__(self) -> Iterator[TypeDescriptor]:
        return iter(list(self._descriptors.values()))

    def __len__(self) -> int:
        return len(self._descriptors)

    def bases(self, descriptor: TypeDescriptor) -> List[TypeDescriptor]:
        """Immediate bases that resolve to valid descriptors, in declaration order"""
        bases = []
        for base in descriptor.bases:
            resolved = self.try_get(base.address)
            if resolved is not None:
                bases.append(resolved)
        return bases

    def primary_base(self, descriptor: TypeDescriptor) -> Optional[TypeDescriptor]:
        address = descriptor.primary_base_address
        if address is None:
            return None
        return self.try_get(address)

    # =========================================================================
    # Vtables
    # =========================================================================

    def _descriptor(self, descriptor: Union[TypeDescriptor, int]) -> TypeDescriptor:
        if isinstance(descriptor, TypeDescriptor):
            with self._lock:
                return self._descriptors.setdefault(descriptor.address, descriptor)
        return self.get(descriptor)

    def vtable_for(
        self,
        descriptor: Union[TypeDescriptor, int],
        monitor: Optional[TaskMonitor] = None
    ) -> ResolvedVtable:
        """
        Vtable of ``descriptor``, resolved once and cached

        Raises:
            InvalidTypeDescriptorError: no class type_info at that address
            AnalysisCancelledError: the monitor was cancelled (nothing is cached)
        """
        descriptor = self._descriptor(descriptor)
        with self._lock:
            vtable = self._vtables.get(descriptor.address)
            if vtable is None:
                vtable = self.resolver.resolve(descriptor, monitor)
                self._vtables[descriptor.address] = vtable
            return vtable

    def resolve_all(
        self,
        addresses: Iterable[int],
        monitor: Optional[TaskMonitor] = None
    ) -> Dict[TypeDescriptor, ResolvedVtable]:
        """
        Resolve vtables for every valid descriptor address

        Invalid addresses are skipped with a warning. A caller's monitor is
        only polled; its message and progress are left alone.
        """
        addresses = list(addresses)
        owned = monitor is None
        monitor = ensure_monitor(monitor, "Resolving vtables" if owned else "")
        if owned:
            monitor.initialize(len(addresses))
        results = {}
        for address in addresses:
            monitor.check_cancelled()
            if owned:
                monitor.increment_progress()
            descriptor = self.try_get(address)
            if descriptor is None:
                logger.warning("Skipping 0x%x: not a class type_info", address)
                continue
            results[descriptor] = self.vtable_for(descriptor, monitor)
        return results

    # =========================================================================
    # Ordering
    # =========================================================================

    def sequence(self, classes: Optional[Iterable[TypeDescriptor]] = None) -> List[TypeDescriptor]:
        """
        Base-before-derived order of ``classes`` (all known descriptors by default)
        """
        if classes is None:
            classes = list(self)
        return sequence_classes(classes, self.primary_base)
