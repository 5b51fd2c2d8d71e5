# -*- coding: utf-8 -*-
"""
gccrtti - Vtable and class hierarchy recovery for GNU C++ binaries

Reads Itanium C++ ABI type_info records from ELF (and MinGW PE) images,
binds each class to its primary vtable and orders classes so that every
base comes before the classes derived from it.

Modules:
- core: program model, loaders, configuration, logging, exceptions
- rtti: type_info parsing, vtable resolution, hierarchy ordering
"""

__version__ = "1.0.0"

from .core import (
    MemoryImage,
    ProgramView,
    TaskMonitor,
    GccRttiConfig,
    default_config,
    load_config,
    load_program,
)
from .rtti import (
    TypeDescriptor,
    ResolvedVtable,
    NO_VTABLE,
    VtableResolver,
    TypeRegistry,
    resolve_vtable,
    sequence_classes,
)

__all__ = [
    '__version__',
    'MemoryImage',
    'ProgramView',
    'TaskMonitor',
    'GccRttiConfig',
    'default_config',
    'load_config',
    'load_program',
    'TypeDescriptor',
    'ResolvedVtable',
    'NO_VTABLE',
    'VtableResolver',
    'TypeRegistry',
    'resolve_vtable',
    'sequence_classes',
]
