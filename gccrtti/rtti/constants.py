# -*- coding: utf-8 -*-
"""
gccrtti/rtti/constants.py - Itanium C++ ABI constants
"""

# Trap placed in vtable slots of pure virtual functions
PURE_VIRTUAL_FUNCTION_NAME = "__cxa_pure_virtual"

# Labels of special symbols inside a type namespace (see core.utils)
VTABLE_SYMBOL_NAME = "vtable"
TYPEINFO_SYMBOL_NAME = "typeinfo"

# Mangled names of the libstdc++ type_info classes describing classes
CLASS_TYPE_INFO_NAMESPACE = "N10__cxxabiv117__class_type_infoE"
SI_CLASS_TYPE_INFO_NAMESPACE = "N10__cxxabiv120__si_class_type_infoE"
VMI_CLASS_TYPE_INFO_NAMESPACE = "N10__cxxabiv121__vmi_class_type_infoE"

# __vmi_class_type_info::__flags_masks
VMI_NON_DIAMOND_REPEAT = 0x1
VMI_DIAMOND_SHAPED = 0x2

# __base_class_type_info::__offset_flags_masks
BASE_VIRTUAL_MASK = 0x1
BASE_PUBLIC_MASK = 0x2
BASE_OFFSET_SHIFT = 8

# A typeinfo's vptr points this many words past the start of its ABI vtable
TYPEINFO_VPTR_WORDS = 2

# Longest type name accepted when reading a typeinfo-name string
MAX_TYPE_NAME_LENGTH = 4096
