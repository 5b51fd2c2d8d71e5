# -*- coding: utf-8 -*-
"""
gccrtti/core/exceptions.py - Unified exception handling

Custom exception hierarchy for the gccrtti project.
"""

from typing import Optional, Dict, Any


class GccRttiError(Exception):
    """
    Base gccrtti exception

    Base class for all gccrtti custom exceptions
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


# =============================================================================
# Analysis exceptions
# =============================================================================

class AnalysisError(GccRttiError):
    """Base analysis exception"""
    pass


class AnalysisCancelledError(AnalysisError):
    """A long-running search was cancelled through its monitor"""
    pass


class InvalidDataTypeError(AnalysisError):
    """Memory at an address does not have the expected record shape"""

    def __init__(self, message: str, address: int = None, **kwargs) -> None:
        super().__init__(message, kwargs)
        self.address = address


class InvalidTypeDescriptorError(InvalidDataTypeError):
    """The address does not hold a valid class type_info record"""
    pass


class InvalidVtableError(InvalidDataTypeError):
    """A vtable candidate failed structural validation"""
    pass


# =============================================================================
# Program / backend exceptions
# =============================================================================

class ProgramError(GccRttiError):
    """Base program backend exception"""
    pass


class MemoryAccessError(ProgramError):
    """Read outside of any mapped section"""

    def __init__(self, message: str, address: int = None, size: int = None, **kwargs) -> None:
        super().__init__(message, kwargs)
        self.address = address
        self.size = size


class BinaryLoadError(ProgramError):
    """Binary could not be loaded"""

    def __init__(self, message: str, path: str = None, **kwargs) -> None:
        super().__init__(message, kwargs)
        self.path = path


class RizinNotFoundError(ProgramError):
    """rzpipe or the rizin executable is not available"""
    pass


# =============================================================================
# Configuration exceptions
# =============================================================================

class ConfigError(GccRttiError):
    """Configuration exception"""
    pass


class ConfigValidationError(ConfigError):
    """Configuration validation exception"""

    def __init__(self, message: str, field: str = None, value: Any = None, **kwargs) -> None:
        super().__init__(message, kwargs)
        self.field = field
        self.value = value


class ConfigLoadError(ConfigError):
    """Configuration loading exception"""

    def __init__(self, message: str, config_path: str = None, **kwargs) -> None:
        super().__init__(message, kwargs)
        self.config_path = config_path


# =============================================================================
# Helpers
# =============================================================================

def format_exception(exc: Exception, include_traceback: bool = False) -> str:
    """
    Format exception information

    Args:
        exc: Exception object
        include_traceback: Whether to include the full stack

    Returns:
        Formatted exception string
    """
    if isinstance(exc, GccRttiError):
        result = f"[{exc.__class__.__name__}] {exc.message}"
        if exc.details:
            result += f"\n  Details: {exc.details}"
    else:
        result = f"[{exc.__class__.__name__}] {str(exc)}"

    if include_traceback:
        import traceback
        result += f"\n  Traceback:\n{traceback.format_exc()}"

    return result
