# -*- coding: utf-8 -*-
"""
gccrtti/core/loader.py - Program backend selection
"""

import logging
from pathlib import Path
from typing import Optional, Union

from .config import GccRttiConfig, default_config
from .exceptions import BinaryLoadError
from .image import MemoryImage
from .program import ProgramView
from .rizin_core import open_rizin_program

logger = logging.getLogger(__name__)

ELF_MAGIC = b"\x7fELF"
PE_MAGIC = b"MZ"


def detect_format(path: Union[str, Path]) -> str:
    """
    Detect the container format from the file magic

    Returns:
        "elf" or "pe"

    Raises:
        BinaryLoadError: missing file or unknown format
    """
    path = Path(path)
    try:
        with open(path, "rb") as f:
            magic = f.read(4)
    except OSError as e:
        raise BinaryLoadError(f"Cannot read {path}: {e}", path=str(path))

    if magic.startswith(ELF_MAGIC):
        return "elf"
    if magic.startswith(PE_MAGIC):
        return "pe"
    raise BinaryLoadError(f"Unknown binary format: {path}", path=str(path), magic=magic.hex())


def load_program(
    path: Union[str, Path],
    backend: Optional[str] = None,
    config: Optional[GccRttiConfig] = None
) -> ProgramView:
    """
    Open a binary with the requested backend

    Args:
        path: Binary file path
        backend: "auto", "elf", "pe" or "rizin" (config.backend when None)
        config: Configuration (default_config when None)

    Returns:
        ProgramView over the binary
    """
    config = config or default_config
    backend = (backend or config.backend).lower()

    if backend == "rizin":
        return open_rizin_program(path, analyze_level=config.rizin_analyze_level)
    if backend == "auto":
        backend = detect_format(path)
    logger.debug("Loading %s with the %s loader", path, backend)

    if backend == "elf":
        return MemoryImage.from_elf(path)
    if backend == "pe":
        return MemoryImage.from_pe(path)
    raise BinaryLoadError(f"Unknown backend: {backend}", path=str(path))
