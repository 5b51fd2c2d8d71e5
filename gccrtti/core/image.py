# -*- coding: utf-8 -*-
"""
gccrtti/core/image.py - In-memory program image

MemoryImage keeps sections, symbols, functions, typed data and recorded
cross references in plain Python containers. It is filled either by hand
(synthetic layouts, raw dumps) or by the ELF / PE loaders below.

Loaders:
    - ELF through pyelftools, applying dynamic relocations so that
      pointers into libstdc++ (``__cxa_pure_virtual``, the
      ``__cxxabiv1`` type_info vtables) land in a synthetic EXTERNAL block
    - PE through pefile (MinGW builds follow the GNU C++ ABI)
"""

import bisect
import logging
import struct
from collections import defaultdict
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple, Union

from .exceptions import BinaryLoadError, MemoryAccessError
from .program import ProgramView
from .types import DataItem, Endianness, FunctionRef, Section, Symbol, XRef, XRefType
from .utils import holds_pointer_data, split_special_name

# Optional dependencies
try:
    from elftools.common.exceptions import ELFError
    from elftools.elf.constants import SH_FLAGS
    from elftools.elf.elffile import ELFFile
    from elftools.elf.relocation import RelocationSection
    from elftools.elf.sections import SymbolTableSection
    HAVE_ELFTOOLS = True
except ImportError:
    HAVE_ELFTOOLS = False

try:
    import pefile
    HAVE_PEFILE = True
except ImportError:
    HAVE_PEFILE = False

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

EXTERNAL_BLOCK_NAME = "EXTERNAL"
EXTERNAL_ENTRY_SIZE = 0x40      # room for a vptr at +2*ptr into an imported vtable
EXTERNAL_ALIGNMENT = 0x1000

# machine -> (RELATIVE types, absolute types, GLOB_DAT types)
ELF_RELOCATION_TYPES = {
    "x64": ({8}, {1}, {6}),
    "x86": ({8}, {1}, {6}),
    "AArch64": ({1027}, {257}, {1025}),
    "ARM": ({23}, {2}, {21}),
}

# Section types that can hold vtables; REL/RELA, DYNSYM, DYNAMIC, HASH,
# NOTE and the GNU version tables cannot
ELF_DATA_SECTION_TYPES = frozenset({
    "SHT_PROGBITS",
    "SHT_NOBITS",
    "SHT_INIT_ARRAY",
    "SHT_FINI_ARRAY",
    "SHT_PREINIT_ARRAY",
})

# PE section characteristics
IMAGE_SCN_MEM_EXECUTE = 0x20000000
IMAGE_SCN_MEM_WRITE = 0x80000000
PE32_PLUS_MAGIC = 0x20b

# COFF symbol table
COFF_SYMBOL_SIZE = 18
COFF_FUNCTION_TYPE = 0x20


class MemoryImage(ProgramView):
    """
    Program image held entirely in memory

    Usage:
        image = MemoryImage(pointer_size=8)
        image.add_section(".data.rel.ro", 0x4000, bytes(0x100))
        image.write_pointer(0x4008, 0x5000)
        image.find_direct_references_to(0x5000)   # {0x4008}
    """

    def __init__(
        self,
        pointer_size: int = 8,
        endianness: Endianness = Endianness.LITTLE,
        name: str = ""
    ):
        if pointer_size not in (4, 8):
            raise ValueError(f"Unsupported pointer size: {pointer_size}")
        self._pointer_size = pointer_size
        self._endianness = endianness
        self.name = name

        self._sections: List[Tuple[Section, bytearray]] = []
        self._symbols_by_address: Dict[int, List[Symbol]] = defaultdict(list)
        self._symbols_by_namespace: Dict[str, List[Symbol]] = defaultdict(list)
        self._symbols_by_name: Dict[str, List[Symbol]] = defaultdict(list)
        self._functions: Dict[int, FunctionRef] = {}
        self._data_starts: List[int] = []
        self._data: Dict[int, DataItem] = {}
        self._xrefs: Dict[int, List[XRef]] = defaultdict(list)
        self._externals: Dict[str, int] = {}

        # value -> slots holding it; rebuilt lazily after writes
        self._pointer_index: Optional[Dict[int, Set[int]]] = None

    # =========================================================================
    # Memory
    # =========================================================================

    @property
    def pointer_size(self) -> int:
        return self._pointer_size

    @property
    def endianness(self) -> Endianness:
        return self._endianness

    @property
    def sections(self) -> List[Section]:
        return [section for section, _ in self._sections]

    def add_section(
        self,
        name: str,
        address: int,
        data: bytes = b"",
        size: Optional[int] = None,
        executable: bool = False,
        writable: bool = False,
        is_data: Optional[bool] = None
    ) -> Section:
        """
        Map a block of bytes at ``address``

        ``is_data`` defaults to a guess from the section name; the pointer
        index skips sections without data.

        Raises:
            ValueError: the block overlaps an existing section
        """
        size = len(data) if size is None else size
        contents = bytearray(data[:size])
        contents.extend(bytes(size - len(contents)))

        section = Section(
            name=name,
            virtual_address=address,
            virtual_size=size,
            raw_size=len(data),
            is_executable=executable,
            is_writable=writable,
            is_data=holds_pointer_data(name) if is_data is None else is_data,
        )
        for existing, _ in self._sections:
            if address < existing.end_address and existing.virtual_address < section.end_address:
                raise ValueError(f"Section {name} overlaps {existing.name}")

        self._sections.append((section, contents))
        self._sections.sort(key=lambda entry: entry[0].virtual_address)
        self._pointer_index = None
        return section

    def _locate(self, address: int, size: int) -> Tuple[Section, bytearray]:
        for section, contents in self._sections:
            if section.contains(address, size):
                return section, contents
        raise MemoryAccessError(
            f"Unmapped read at 0x{address:x} ({size} bytes)", address=address, size=size
        )

    def read_bytes(self, address: int, size: int) -> bytes:
        section, contents = self._locate(address, size)
        offset = address - section.virtual_address
        return bytes(contents[offset:offset + size])

    def write_bytes(self, address: int, data: bytes) -> None:
        section, contents = self._locate(address, len(data))
        offset = address - section.virtual_address
        contents[offset:offset + len(data)] = data
        self._pointer_index = None

    def write_pointer(self, address: int, value: int) -> None:
        mask = (1 << (8 * self._pointer_size)) - 1
        self.write_bytes(
            address, (value & mask).to_bytes(self._pointer_size, self._endianness.byteorder)
        )

    def write_signed(self, address: int, value: int, size: Optional[int] = None) -> None:
        size = size or self._pointer_size
        self.write_bytes(address, value.to_bytes(size, self._endianness.byteorder, signed=True))

    def write_uint32(self, address: int, value: int) -> None:
        self.write_bytes(address, value.to_bytes(4, self._endianness.byteorder))

    def is_executable(self, address: int) -> bool:
        for section, _ in self._sections:
            if section.contains(address):
                return section.is_executable
        return False

    # =========================================================================
    # Cross references
    # =========================================================================

    def _build_pointer_index(self) -> Dict[int, Set[int]]:
        ptr = self._pointer_size
        fmt = ("<" if self._endianness is Endianness.LITTLE else ">") + ("Q" if ptr == 8 else "I")
        index: Dict[int, Set[int]] = defaultdict(set)
        for section, contents in self._sections:
            if section.is_executable or not section.is_data:
                continue
            start = (-section.virtual_address) % ptr
            count = (len(contents) - start) // ptr
            if count <= 0:
                continue
            words = struct.iter_unpack(fmt, bytes(contents[start:start + count * ptr]))
            base = section.virtual_address + start
            for i, (value,) in enumerate(words):
                if value:
                    index[value].add(base + i * ptr)
        logger.debug("Pointer index built: %d distinct values", len(index))
        return index

    def find_direct_references_to(self, address: int) -> Set[int]:
        if self._pointer_index is None:
            self._pointer_index = self._build_pointer_index()
        return set(self._pointer_index.get(address, ()))

    def add_reference(self, from_addr: int, to_addr: int, type: XRefType = XRefType.DATA) -> XRef:
        """Record a cross reference in the listing"""
        xref = XRef(from_addr=from_addr, to_addr=to_addr, type=type)
        self._xrefs[to_addr].append(xref)
        return xref

    def get_recorded_references_to(self, address: int) -> Set[int]:
        return {xref.from_addr for xref in self._xrefs.get(address, ())}

    # =========================================================================
    # Listing
    # =========================================================================

    def define_data(self, item: DataItem) -> None:
        """Define ``item``, clearing any data items it overlaps"""
        for start in list(self._data_starts):
            existing = self._data[start]
            if existing.address < item.end_address and item.address < existing.end_address:
                self._remove_data(start)
        bisect.insort(self._data_starts, item.address)
        self._data[item.address] = item

    def _remove_data(self, start: int) -> None:
        del self._data[start]
        self._data_starts.remove(start)

    def get_defined_data_at(self, address: int) -> Optional[DataItem]:
        return self._data.get(address)

    def get_data_containing(self, address: int) -> Optional[DataItem]:
        index = bisect.bisect_right(self._data_starts, address) - 1
        if index < 0:
            return None
        item = self._data[self._data_starts[index]]
        return item if item.contains(address) else None

    # =========================================================================
    # Symbols and functions
    # =========================================================================

    def add_symbol(
        self,
        address: int,
        name: str,
        type: str = "object",
        size: int = 0,
        is_global: bool = True
    ) -> Symbol:
        """Add a symbol; GNU special names are nested under their type"""
        label, namespace = split_special_name(name)
        for existing in self._symbols_by_address.get(address, ()):
            if existing.raw_name == name:
                return existing

        symbol = Symbol(
            address=address,
            name=label,
            type=type,
            size=size,
            is_global=is_global,
            namespace=namespace,
            raw_name=name,
        )
        self._symbols_by_address[address].append(symbol)
        self._symbols_by_namespace[namespace].append(symbol)
        self._symbols_by_name[label].append(symbol)
        if name != label:
            self._symbols_by_name[name].append(symbol)
        return symbol

    def add_function(self, address: int, name: str = "") -> FunctionRef:
        function = FunctionRef(address=address, name=name)
        existing = self._functions.get(address)
        if existing is None or (name and not existing.name):
            self._functions[address] = function
        if name:
            self.add_symbol(address, name, type="func")
        return self._functions[address]

    def add_external(self, name: str, is_function: bool = False) -> int:
        """Address of ``name`` in the EXTERNAL block, allocating it once"""
        if name in self._externals:
            return self._externals[name]

        block = self._external_block()
        section, contents = block
        address = section.end_address
        contents.extend(bytes(EXTERNAL_ENTRY_SIZE))
        section.virtual_size += EXTERNAL_ENTRY_SIZE
        self._externals[name] = address

        self.add_symbol(address, name, type="func" if is_function else "object")
        if is_function:
            self.add_function(address, name)
        return address

    def _external_block(self) -> Tuple[Section, bytearray]:
        for entry in self._sections:
            if entry[0].name == EXTERNAL_BLOCK_NAME:
                return entry
        end = max((section.end_address for section, _ in self._sections), default=0)
        start = (end + 2 * EXTERNAL_ALIGNMENT - 1) // EXTERNAL_ALIGNMENT * EXTERNAL_ALIGNMENT
        self.add_section(EXTERNAL_BLOCK_NAME, start, b"", is_data=False)
        return self._external_block()

    def lookup_child_symbols(self, namespace: str) -> List[Symbol]:
        return list(self._symbols_by_namespace.get(namespace, ()))

    def lookup_symbols_by_name(self, name: str) -> List[Symbol]:
        return list(self._symbols_by_name.get(name, ()))

    def get_symbols_at(self, address: int) -> List[Symbol]:
        return list(self._symbols_by_address.get(address, ()))

    def resolve_function_at(self, address: int) -> Optional[FunctionRef]:
        return self._functions.get(address)

    # =========================================================================
    # ELF loader
    # =========================================================================

    @classmethod
    def from_elf(cls, path: Union[str, Path]) -> "MemoryImage":
        """
        Load an ELF executable or shared object

        Raises:
            BinaryLoadError: pyelftools missing or malformed file
        """
        if not HAVE_ELFTOOLS:
            raise BinaryLoadError("pyelftools required: pip install pyelftools", path=str(path))

        path = Path(path)
        try:
            with open(path, "rb") as f:
                elf = ELFFile(f)
                image = cls(
                    pointer_size=elf.elfclass // 8,
                    endianness=Endianness.LITTLE if elf.little_endian else Endianness.BIG,
                    name=path.name,
                )
                image._load_elf_sections(elf)
                image._load_elf_symbols(elf)
                image._apply_elf_relocations(elf)
        except (ELFError, OSError) as e:
            raise BinaryLoadError(f"Cannot load ELF file: {e}", path=str(path))

        logger.info(
            "Loaded ELF %s (%d-bit, %d sections, %d functions)",
            path.name, image.pointer_size * 8, len(image._sections), len(image._functions)
        )
        return image

    def _load_elf_sections(self, elf) -> None:
        for section in elf.iter_sections():
            flags = section["sh_flags"]
            if not flags & SH_FLAGS.SHF_ALLOC or section["sh_size"] == 0:
                continue
            nobits = section["sh_type"] == "SHT_NOBITS"
            if nobits and flags & SH_FLAGS.SHF_TLS:
                # .tbss occupies no address space of its own
                continue
            data = b"" if nobits else section.data()
            try:
                self.add_section(
                    section.name,
                    section["sh_addr"],
                    data,
                    size=section["sh_size"],
                    executable=bool(flags & SH_FLAGS.SHF_EXECINSTR),
                    writable=bool(flags & SH_FLAGS.SHF_WRITE),
                    is_data=(
                        section["sh_type"] in ELF_DATA_SECTION_TYPES
                        and holds_pointer_data(section.name)
                    ),
                )
            except ValueError as e:
                logger.debug("Skipping section %s: %s", section.name, e)

    def _load_elf_symbols(self, elf) -> None:
        thumb = elf.get_machine_arch() == "ARM"
        for section in elf.iter_sections():
            if not isinstance(section, SymbolTableSection):
                continue
            for sym in section.iter_symbols():
                if not sym.name or sym["st_shndx"] == "SHN_UNDEF":
                    continue
                sym_type = sym["st_info"]["type"]
                if sym_type in ("STT_SECTION", "STT_FILE"):
                    continue
                address = sym["st_value"]
                is_function = sym_type in ("STT_FUNC", "STT_GNU_IFUNC")
                if is_function and thumb:
                    address &= ~1
                self.add_symbol(
                    address,
                    sym.name,
                    type="func" if is_function else sym_type[4:].lower(),
                    size=sym["st_size"],
                    is_global=sym["st_info"]["bind"] != "STB_LOCAL",
                )
                if is_function:
                    self.add_function(address, sym.name)

    def _apply_elf_relocations(self, elf) -> None:
        arch = elf.get_machine_arch()
        types = ELF_RELOCATION_TYPES.get(arch)
        if types is None:
            logger.warning("Relocations for %s are not applied", arch)
            return
        relative, absolute, glob_dat = types

        applied = 0
        for section in elf.iter_sections():
            if not isinstance(section, RelocationSection):
                continue
            symtab = elf.get_section(section["sh_link"]) if section["sh_link"] else None
            for reloc in section.iter_relocations():
                rtype = reloc["r_info_type"]
                offset = reloc["r_offset"]
                if rtype not in relative and rtype not in absolute and rtype not in glob_dat:
                    continue
                if not self.is_mapped(offset, self._pointer_size):
                    continue

                addend = reloc["r_addend"] if reloc.is_RELA() else self.read_pointer(offset)
                if rtype in relative:
                    value = addend
                else:
                    if not isinstance(symtab, SymbolTableSection):
                        continue
                    value = self._elf_symbol_address(symtab.get_symbol(reloc["r_info_sym"]))
                    if rtype in absolute:
                        value += addend
                self.write_pointer(offset, value)
                applied += 1
        logger.debug("Applied %d relocations", applied)

    def _elf_symbol_address(self, sym) -> int:
        if sym["st_shndx"] != "SHN_UNDEF":
            return sym["st_value"]
        _, namespace = split_special_name(sym.name)
        is_function = not namespace and sym["st_info"]["type"] != "STT_OBJECT"
        return self.add_external(sym.name, is_function=is_function)

    # =========================================================================
    # PE loader
    # =========================================================================

    @classmethod
    def from_pe(cls, path: Union[str, Path]) -> "MemoryImage":
        """
        Load a PE image built with a GNU toolchain (MinGW)

        Raises:
            BinaryLoadError: pefile missing or malformed file
        """
        if not HAVE_PEFILE:
            raise BinaryLoadError("pefile required: pip install pefile", path=str(path))

        path = Path(path)
        try:
            raw = path.read_bytes()
            pe = pefile.PE(data=raw)
        except (pefile.PEFormatError, OSError) as e:
            raise BinaryLoadError(f"Cannot load PE file: {e}", path=str(path))

        try:
            is_64bit = pe.OPTIONAL_HEADER.Magic == PE32_PLUS_MAGIC
            image = cls(pointer_size=8 if is_64bit else 4, name=path.name)
            image_base = pe.OPTIONAL_HEADER.ImageBase

            for section in pe.sections:
                name = section.Name.rstrip(b"\x00").decode("utf-8", errors="ignore")
                size = max(section.Misc_VirtualSize, section.SizeOfRawData)
                chars = section.Characteristics
                try:
                    image.add_section(
                        name,
                        image_base + section.VirtualAddress,
                        section.get_data()[:size],
                        size=size,
                        executable=bool(chars & IMAGE_SCN_MEM_EXECUTE),
                        writable=bool(chars & IMAGE_SCN_MEM_WRITE),
                    )
                except ValueError as e:
                    logger.debug("Skipping section %s: %s", name, e)

            image._load_coff_symbols(pe, raw, image_base, strip_underscore=not is_64bit)

            if hasattr(pe, "DIRECTORY_ENTRY_EXPORT"):
                for exp in pe.DIRECTORY_ENTRY_EXPORT.symbols:
                    if not exp.name:
                        continue
                    name = exp.name.decode("utf-8", errors="ignore")
                    address = image_base + exp.address
                    if image.is_executable(address):
                        image.add_function(address, name)
                    else:
                        image.add_symbol(address, name)

            if hasattr(pe, "DIRECTORY_ENTRY_IMPORT"):
                for entry in pe.DIRECTORY_ENTRY_IMPORT:
                    for imp in entry.imports:
                        if imp.name:
                            name = imp.name.decode("utf-8", errors="ignore")
                            image.add_symbol(imp.address, f"__imp_{name}", type="import")
        finally:
            pe.close()

        logger.info(
            "Loaded PE %s (%d-bit, %d sections, %d functions)",
            path.name, image.pointer_size * 8, len(image._sections), len(image._functions)
        )
        return image

    def _load_coff_symbols(self, pe, raw: bytes, image_base: int, strip_underscore: bool) -> None:
        """MinGW keeps a COFF symbol table that pefile does not parse"""
        table = pe.FILE_HEADER.PointerToSymbolTable
        count = pe.FILE_HEADER.NumberOfSymbols
        if not table or not count or table + count * COFF_SYMBOL_SIZE > len(raw):
            return
        strings = table + count * COFF_SYMBOL_SIZE

        index = 0
        while index < count:
            entry = raw[table + index * COFF_SYMBOL_SIZE:table + (index + 1) * COFF_SYMBOL_SIZE]
            short_name, value, section_number, sym_type, _, aux_count = struct.unpack(
                "<8sIhHBB", entry
            )
            index += 1 + aux_count

            if section_number <= 0 or section_number > len(pe.sections):
                continue
            if short_name[:4] == b"\x00\x00\x00\x00":
                offset = strings + struct.unpack("<I", short_name[4:])[0]
                end = raw.find(b"\x00", offset)
                name = raw[offset:end if end >= 0 else len(raw)].decode("utf-8", errors="ignore")
            else:
                name = short_name.rstrip(b"\x00").decode("utf-8", errors="ignore")
            if not name or name.startswith("."):
                continue
            if strip_underscore and name.startswith("_"):
                name = name[1:]

            address = image_base + pe.sections[section_number - 1].VirtualAddress + value
            if sym_type & COFF_FUNCTION_TYPE:
                self.add_function(address, name)
            else:
                self.add_symbol(address, name)
