# -*- coding: utf-8 -*-
"""
gccrtti/core - Program model and ambient services

Provides:
    - ProgramView interface and the in-memory / rizin backends
    - ELF and PE loaders
    - Configuration, logging, exceptions
    - Cooperative cancellation (TaskMonitor)
"""

# =============================================================================
# Program model
# =============================================================================

from .types import (
    Endianness,
    Symbol,
    Section,
    XRef,
    XRefType,
    FunctionRef,
    DataKind,
    DataItem,
    format_address,
)

from .program import ProgramView
from .image import MemoryImage, HAVE_ELFTOOLS, HAVE_PEFILE
from .rizin_core import RizinCore, RizinProgram, open_rizin_program, HAVE_RIZIN
from .loader import detect_format, load_program
from .monitor import TaskMonitor, ensure_monitor

# =============================================================================
# Configuration
# =============================================================================

from .config import (
    GccRttiConfig,
    VtableSearchConfig,
    default_config,
    load_config,
)

# =============================================================================
# Exceptions
# =============================================================================

from .exceptions import (
    GccRttiError,
    AnalysisError,
    AnalysisCancelledError,
    InvalidDataTypeError,
    InvalidTypeDescriptorError,
    InvalidVtableError,
    ProgramError,
    MemoryAccessError,
    BinaryLoadError,
    RizinNotFoundError,
    ConfigError,
    ConfigValidationError,
    ConfigLoadError,
    format_exception,
)

# =============================================================================
# Logging
# =============================================================================

from .logging import (
    GccRttiLogger,
    get_logger,
    setup_logging,
    setup_logging_from_config,
)

__all__ = [
    # Program model
    'Endianness',
    'Symbol',
    'Section',
    'XRef',
    'XRefType',
    'FunctionRef',
    'DataKind',
    'DataItem',
    'format_address',
    'ProgramView',
    'MemoryImage',
    'HAVE_ELFTOOLS',
    'HAVE_PEFILE',
    'RizinCore',
    'RizinProgram',
    'open_rizin_program',
    'HAVE_RIZIN',
    'detect_format',
    'load_program',
    'TaskMonitor',
    'ensure_monitor',
    # Configuration
    'GccRttiConfig',
    'VtableSearchConfig',
    'default_config',
    'load_config',
    # Exceptions
    'GccRttiError',
    'AnalysisError',
    'AnalysisCancelledError',
    'InvalidDataTypeError',
    'InvalidTypeDescriptorError',
    'InvalidVtableError',
    'ProgramError',
    'MemoryAccessError',
    'BinaryLoadError',
    'RizinNotFoundError',
    'ConfigError',
    'ConfigValidationError',
    'ConfigLoadError',
    'format_exception',
    # Logging
    'GccRttiLogger',
    'get_logger',
    'setup_logging',
    'setup_logging_from_config',
]
