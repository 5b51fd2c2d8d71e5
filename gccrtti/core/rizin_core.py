# -*- coding: utf-8 -*-
"""
gccrtti/core/rizin_core.py - Rizin analysis backend

Rizin session wrapper plus a ProgramView adapter over it, so the RTTI
analysis can run against anything rizin can open.

Dependencies:
    - rzpipe: Python interface to Rizin
"""

import logging
from pathlib import Path
from typing import Dict, List, Optional, Any, Set, Union

# Rizin Python interface
try:
    import rzpipe
    HAVE_RIZIN = True
except ImportError:
    HAVE_RIZIN = False
    rzpipe = None

from .exceptions import BinaryLoadError, MemoryAccessError, RizinNotFoundError
from .program import ProgramView
from .types import (
    DataItem, DataKind, Endianness, FunctionRef, Section, Symbol, XRef, XRefType,
)
from .utils import holds_pointer_data, split_special_name, strip_backend_prefix

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# Rizin meta item type -> DataKind (pointer-sized "d" items become POINTER)
RIZIN_META_KINDS = {
    "s": DataKind.STRING,
    "f": DataKind.STRUCTURE,
    "t": DataKind.STRUCTURE,
    "m": DataKind.STRUCTURE,
    "d": DataKind.INTEGER,
}


# =============================================================================
# RizinCore
# =============================================================================

class RizinCore:
    """
    Rizin session

    Usage:
        with RizinCore("libfoo.so") as rz:
            for sym in rz.get_symbols():
                print(sym.raw_name, hex(sym.address))
    """

    def __init__(
        self,
        binary_path: Union[str, Path],
        auto_analyze: bool = True,
        analyze_level: int = 1
    ):
        """
        Open a binary in rizin

        Args:
            binary_path: Binary file path
            auto_analyze: Run the analysis commands on open
            analyze_level: 0-3
                0: no analysis
                1: basic analysis (aa) - default, enough for symbols and functions
                2: deep analysis (aaa)
                3: full analysis (aaaa)
        """
        if not HAVE_RIZIN:
            raise RizinNotFoundError(
                "Rizin not available. Run: pip install rzpipe\n"
                "and install Rizin itself: https://rizin.re/"
            )

        self.binary_path = Path(binary_path)
        if not self.binary_path.exists():
            raise BinaryLoadError(f"File not found: {binary_path}", path=str(binary_path))

        try:
            self._rz = rzpipe.open(str(self.binary_path))
        except Exception as e:
            raise BinaryLoadError(f"Cannot open binary: {e}", path=str(binary_path))

        self._info_cache: Optional[Dict] = None
        self._symbols_cache: Optional[List[Symbol]] = None
        self._sections_cache: Optional[List[Section]] = None
        self._functions_cache: Optional[Dict[int, FunctionRef]] = None
        self._meta_cache: Optional[List[DataItem]] = None

        if auto_analyze:
            self._auto_analyze(analyze_level)

        logger.info(f"Loaded: {self.binary_path.name} ({self.bits}-bit)")

    def _auto_analyze(self, level: int):
        """Run automatic analysis"""
        if level >= 1:
            self._rz.cmd("aa")
        if level >= 2:
            self._rz.cmd("aaa")
        if level >= 3:
            self._rz.cmd("aaaa")

    # =========================================================================
    # Binary information
    # =========================================================================

    @property
    def info(self) -> Dict:
        if self._info_cache is None:
            self._info_cache = self._rz.cmdj("iIj") or {}
        return self._info_cache

    @property
    def bits(self) -> int:
        return self.info.get("bits", 64)

    @property
    def endianness(self) -> Endianness:
        return Endianness.BIG if self.info.get("endian") == "big" else Endianness.LITTLE

    # =========================================================================
    # Symbols, sections, functions
    # =========================================================================

    def get_symbols(self) -> List[Symbol]:
        """Symbols and imports, with GNU special names split"""
        if self._symbols_cache is None:
            self._symbols_cache = []
            for sym in self._rz.cmdj("isj") or []:
                raw = sym.get("realname") or sym.get("name", "")
                address = sym.get("vaddr", 0)
                if not raw or not address:
                    continue
                raw = strip_backend_prefix(raw)
                label, namespace = split_special_name(raw)
                self._symbols_cache.append(Symbol(
                    address=address,
                    name=label,
                    type=sym.get("type", "").lower(),
                    size=sym.get("size", 0),
                    is_global=sym.get("bind", "") == "GLOBAL",
                    namespace=namespace,
                    raw_name=raw,
                ))
            for imp in self._rz.cmdj("iij") or []:
                address = imp.get("plt", 0)
                name = imp.get("name", "")
                if address and name:
                    self._symbols_cache.append(Symbol(
                        address=address, name=name, type="func", raw_name=name,
                    ))
        return self._symbols_cache

    def get_sections(self) -> List[Section]:
        """Section list"""
        if self._sections_cache is None:
            self._sections_cache = []
            for sec in self._rz.cmdj("iSj") or []:
                perm = sec.get("perm", "")
                self._sections_cache.append(Section(
                    name=sec.get("name", ""),
                    virtual_address=sec.get("vaddr", 0),
                    virtual_size=sec.get("vsize", 0),
                    raw_offset=sec.get("paddr", 0),
                    raw_size=sec.get("size", 0),
                    is_executable="x" in perm,
                    is_writable="w" in perm,
                    is_readable="r" in perm,
                    is_data=holds_pointer_data(sec.get("name", "")),
                ))
        return self._sections_cache

    def get_functions(self) -> Dict[int, FunctionRef]:
        """Functions found by analysis plus imported functions"""
        if self._functions_cache is None:
            self._functions_cache = {}
            for fcn in self._rz.cmdj("aflj") or []:
                address = fcn.get("offset", 0)
                self._functions_cache[address] = FunctionRef(
                    address=address, name=strip_backend_prefix(fcn.get("name", "")),
                )
            for sym in self.get_symbols():
                if sym.type == "func" and sym.address not in self._functions_cache:
                    self._functions_cache[sym.address] = FunctionRef(
                        address=sym.address, name=sym.raw_name,
                    )
        return self._functions_cache

    # =========================================================================
    # Cross references and search
    # =========================================================================

    def get_xrefs_to(self, address: int) -> List[XRef]:
        """References recorded by analysis"""
        xrefs = []
        for x in self._rz.cmdj(f"axtj @ {address}") or []:
            xref_type_str = x.get("type", "").upper()
            if "CALL" in xref_type_str:
                xref_type = XRefType.CALL
            elif "JMP" in xref_type_str or "CODE" in xref_type_str:
                xref_type = XRefType.JUMP
            elif "STRING" in xref_type_str:
                xref_type = XRefType.STRING
            elif "DATA" in xref_type_str:
                xref_type = XRefType.DATA
            else:
                xref_type = XRefType.UNKNOWN
            xrefs.append(XRef(
                from_addr=x.get("from", 0),
                to_addr=address,
                type=xref_type,
                from_function=x.get("fcn_name", ""),
            ))
        return xrefs

    def search_value(self, value: int, size: int) -> List[int]:
        """Addresses where ``value`` is stored as a ``size``-byte word"""
        hits = self._rz.cmdj(f"/v{size}j {value}") or []
        return [hit.get("offset", 0) for hit in hits if "offset" in hit]

    # =========================================================================
    # Listing
    # =========================================================================

    def get_meta_items(self) -> List[DataItem]:
        """Data items defined in the rizin metadata"""
        if self._meta_cache is None:
            self._meta_cache = []
            pointer_size = self.bits // 8
            for meta in self._rz.cmdj("Cj") or []:
                size = meta.get("size", 0)
                kind = RIZIN_META_KINDS.get(meta.get("type", ""))
                if kind is None or not size:
                    continue
                if kind is DataKind.INTEGER and size == pointer_size:
                    kind = DataKind.POINTER
                self._meta_cache.append(DataItem(
                    address=meta.get("offset", 0),
                    length=size,
                    kind=kind,
                    name=meta.get("name", ""),
                ))
        return self._meta_cache

    def define_data(self, item: DataItem) -> None:
        """Mark ``item`` as data and flag it"""
        self._rz.cmd(f"Cd {item.length} @ {item.address}")
        if item.name:
            self._rz.cmd(f"f {item.name} {item.length} @ {item.address}")
        self._meta_cache = None

    # =========================================================================
    # Memory
    # =========================================================================

    def read_bytes(self, address: int, size: int) -> bytes:
        """Read bytes"""
        hex_str = self._rz.cmd(f"p8 {size} @ {address}")
        return bytes.fromhex(hex_str.strip()) if hex_str else b""

    # =========================================================================
    # Helpers
    # =========================================================================

    def cmd(self, command: str) -> str:
        """Run a raw Rizin command"""
        return self._rz.cmd(command)

    def cmdj(self, command: str) -> Any:
        """Run a command and parse its JSON output"""
        return self._rz.cmdj(command)

    def clear_cache(self):
        """Drop all caches"""
        self._info_cache = None
        self._symbols_cache = None
        self._sections_cache = None
        self._functions_cache = None
        self._meta_cache = None

    def close(self):
        """Close the session"""
        if getattr(self, "_rz", None):
            self._rz.quit()
            self._rz = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def __del__(self):
        self.close()


# =============================================================================
# ProgramView adapter
# =============================================================================

class RizinProgram(ProgramView):
    """ProgramView over a RizinCore session"""

    def __init__(self, core: RizinCore):
        self.core = core
        self._by_address: Optional[Dict[int, List[Symbol]]] = None

    @property
    def pointer_size(self) -> int:
        return self.core.bits // 8

    @property
    def endianness(self) -> Endianness:
        return self.core.endianness

    def _mapped(self, address: int, size: int) -> bool:
        return any(
            section.contains(address, size) for section in self.core.get_sections()
        )

    def read_bytes(self, address: int, size: int) -> bytes:
        if not self._mapped(address, size):
            raise MemoryAccessError(
                f"Unmapped read at 0x{address:x} ({size} bytes)", address=address, size=size
            )
        return self.core.read_bytes(address, size)

    def find_direct_references_to(self, address: int) -> Set[int]:
        ptr = self.pointer_size
        sections = [
            section for section in self.core.get_sections()
            if section.is_data and not section.is_executable
        ]
        return {
            hit for hit in self.core.search_value(address, ptr)
            if hit % ptr == 0 and any(section.contains(hit, ptr) for section in sections)
        }

    def get_recorded_references_to(self, address: int) -> Set[int]:
        return {xref.from_addr for xref in self.core.get_xrefs_to(address)}

    def get_defined_data_at(self, address: int) -> Optional[DataItem]:
        for item in self.core.get_meta_items():
            if item.address == address:
                return item
        return None

    def get_data_containing(self, address: int) -> Optional[DataItem]:
        for item in self.core.get_meta_items():
            if item.contains(address):
                return item
        return None

    def define_data(self, item: DataItem) -> None:
        self.core.define_data(item)

    def _symbols_by_address(self) -> Dict[int, List[Symbol]]:
        if self._by_address is None:
            self._by_address = {}
            for sym in self.core.get_symbols():
                self._by_address.setdefault(sym.address, []).append(sym)
        return self._by_address

    def lookup_child_symbols(self, namespace: str) -> List[Symbol]:
        return [sym for sym in self.core.get_symbols() if sym.namespace == namespace]

    def lookup_symbols_by_name(self, name: str) -> List[Symbol]:
        return [
            sym for sym in self.core.get_symbols()
            if sym.name == name or sym.raw_name == name
        ]

    def get_symbols_at(self, address: int) -> List[Symbol]:
        return list(self._symbols_by_address().get(address, ()))

    def resolve_function_at(self, address: int) -> Optional[FunctionRef]:
        return self.core.get_functions().get(address)


def open_rizin_program(path: Union[str, Path], analyze_level: int = 1) -> RizinProgram:
    """Open ``path`` in rizin and wrap it as a ProgramView"""
    return RizinProgram(RizinCore(path, auto_analyze=analyze_level > 0, analyze_level=analyze_level))
