# -*- coding: utf-8 -*-
"""
gccrtti/rtti - GNU C++ RTTI recovery

    - typeinfo: class type_info records (__class / __si_class / __vmi_class)
    - resolver: vtable lookup for a type_info
    - hierarchy: base-before-derived ordering
    - registry: per-image analysis session tying the above together
"""

from .typeinfo import (
    TypeInfoKind,
    BaseClassRef,
    TypeDescriptor,
    read_type_descriptor,
    is_type_descriptor,
)
from .vtable import (
    FunctionTableKind,
    VtableCandidate,
    ResolutionSource,
    ResolvedVtable,
    NO_VTABLE,
    classify_function_tables,
)
from .resolver import VtableResolver, resolve_vtable
from .hierarchy import sequence_classes
from .registry import TypeRegistry

__all__ = [
    'TypeInfoKind',
    'BaseClassRef',
    'TypeDescriptor',
    'read_type_descriptor',
    'is_type_descriptor',
    'FunctionTableKind',
    'VtableCandidate',
    'ResolutionSource',
    'ResolvedVtable',
    'NO_VTABLE',
    'classify_function_tables',
    'VtableResolver',
    'resolve_vtable',
    'sequence_classes',
    'TypeRegistry',
]
