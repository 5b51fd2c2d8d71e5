# -*- coding: utf-8 -*-
"""
gccrtti/core/utils.py - Shared helpers

Address parsing and GNU special-name handling shared by the backends.
"""

from typing import Union, Tuple, Iterable, List


# Itanium C++ ABI special names: prefix -> label used inside the type namespace
SPECIAL_NAME_PREFIXES = {
    "_ZTV": "vtable",
    "_ZTI": "typeinfo",
    "_ZTS": "typeinfo-name",
    "_ZTT": "VTT",
}

# Prefixes that backends put in front of imported or analysed symbols
BACKEND_NAME_PREFIXES = ("sym.imp.", "reloc.", "sym.", "imp.", "fcn.")

# Loader metadata sections: relocation records, dynamic linking tables,
# unwind info and import/export directories never hold vtables
METADATA_SECTION_PREFIXES = (
    ".rel.", ".rela.", ".relr.", ".dynsym", ".dynstr", ".dynamic",
    ".hash", ".gnu.hash", ".gnu.version", ".note", ".interp",
    ".eh_frame", ".gcc_except_table", ".got", ".comment", ".debug",
    ".symtab", ".strtab", ".shstrtab",
    ".reloc", ".pdata", ".xdata", ".edata", ".idata", ".rsrc",
)


def parse_address(addr_input: Union[str, int]) -> int:
    """
    Parse an address

    Supported formats:
    - hex string: "0x1234", "0X1234"
    - decimal string: "1234"
    - integer: 1234

    Raises:
        ValueError: invalid address

    Examples:
        >>> parse_address("0x1000")
        4096
        >>> parse_address("4096")
        4096
    """
    if isinstance(addr_input, int):
        return addr_input

    if isinstance(addr_input, str):
        addr_input = addr_input.strip()
        if not addr_input:
            raise ValueError("Empty address string")

        if addr_input.lower().startswith("0x"):
            return int(addr_input, 16)
        return int(addr_input)

    return int(addr_input)


def strip_backend_prefix(name: str) -> str:
    """Drop decorations such as ``sym.imp.`` that analysis backends add"""
    for prefix in BACKEND_NAME_PREFIXES:
        if name.startswith(prefix):
            return name[len(prefix):]
    return name


def split_special_name(name: str) -> Tuple[str, str]:
    """
    Split a GNU special symbol name into (label, namespace)

    ``_ZTVN3foo3BarE`` -> ``("vtable", "N3foo3BarE")``. Names that are
    not special come back unchanged with an empty namespace.
    """
    name = strip_backend_prefix(name)
    # Mach-O style leading underscore
    if name.startswith("__Z"):
        name = name[1:]
    for prefix, label in SPECIAL_NAME_PREFIXES.items():
        if name.startswith(prefix) and len(name) > len(prefix):
            return label, name[len(prefix):]
    return name, ""


def namespace_of(type_name: str) -> str:
    """Namespace key for a mangled type name (local-linkage ``*`` removed)"""
    return type_name.lstrip("*")


def unique(items: Iterable) -> List:
    """Deduplicate while keeping first-seen order"""
    return list(dict.fromkeys(items))


def holds_pointer_data(section_name: str) -> bool:
    """False for sections that only carry loader metadata (see METADATA_SECTION_PREFIXES)"""
    name = section_name.lower()
    return not any(
        name == prefix.rstrip(".") or name.startswith(prefix)
        for prefix in METADATA_SECTION_PREFIXES
    )
