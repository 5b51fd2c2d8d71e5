#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
gccrtti - Vtable / class hierarchy CLI Tool

Usage:
    python rtti_cli.py vtables libfoo.so                    # Every typeinfo symbol
    python rtti_cli.py vtables libfoo.so -t 0x4d10 -t 0x4d28
    python rtti_cli.py order libfoo.so                      # Base-before-derived order
    python rtti_cli.py vtables app.exe --backend rizin --log-level DEBUG
"""

import sys
import argparse
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent))

from gccrtti.core import (
    GccRttiError,
    TaskMonitor,
    default_config,
    format_address,
    format_exception,
    load_config,
    load_program,
    setup_logging_from_config,
)
from gccrtti.core.config import VALID_BACKENDS, VALID_LOG_LEVELS
from gccrtti.core.utils import parse_address, unique
from gccrtti.rtti import TypeRegistry
from gccrtti.rtti.constants import TYPEINFO_SYMBOL_NAME


def _open(args):
    """Configuration, program and registry for a subcommand"""
    config = load_config(args.config) if args.config else default_config
    if args.log_level:
        config.log_level = args.log_level
    setup_logging_from_config(config)
    config.validate(raise_on_error=True)

    program = load_program(args.binary, backend=args.backend, config=config)
    return TypeRegistry(program, config)


def _collect_descriptors(registry, addresses):
    """Descriptors for -t addresses, or for every typeinfo symbol"""
    if addresses:
        candidates = unique(addresses)
    else:
        symbols = registry.program.lookup_symbols_by_name(TYPEINFO_SYMBOL_NAME)
        candidates = unique(sorted(symbol.address for symbol in symbols))

    descriptors = []
    skipped = 0
    for address in candidates:
        descriptor = registry.try_get(address)
        if descriptor is None:
            skipped += 1
            if addresses:
                print(f"[-] Not a class type_info: {format_address(address)}")
            continue
        descriptors.append(descriptor)

    print(f"[*] {len(descriptors)} class type_info records"
          + (f" ({skipped} other typeinfo skipped)" if skipped and not addresses else ""))
    return descriptors


def cmd_vtables(args):
    """Resolve the vtable of each class"""
    registry = _open(args)
    if registry is None:
        return 1

    monitor = TaskMonitor("vtables")
    descriptors = _collect_descriptors(registry, args.typeinfo)
    found = 0
    for descriptor in descriptors:
        vtable = registry.vtable_for(descriptor, monitor)
        print(f"\n[{descriptor.kind.name}] {descriptor} @ {format_address(descriptor.address)}")
        if descriptor.is_diamond_shaped or descriptor.has_repeated_bases:
            shape = "diamond" if descriptor.is_diamond_shaped else "repeated bases"
            print(f"    Shape: {shape}")
        for base in registry.bases(descriptor):
            print(f"    Base: {base}")
        if not vtable:
            print("    Vtable: not found")
            continue

        found += 1
        print(f"    Vtable: {format_address(vtable.address)} ({vtable.source.name.lower()}, "
              f"{vtable.candidate.slot_count} slots)")
        for index, table in enumerate(vtable.function_tables):
            print(f"    Table {index}: {len(table)} slots")
            if args.verbose:
                for slot, function in enumerate(table):
                    print(f"        [{slot:3d}] {function if function is not None else '-'}")

    print(f"\n[+] Resolved {found}/{len(descriptors)} vtables")
    return 0


def cmd_order(args):
    """Print classes with every base before its derived classes"""
    registry = _open(args)
    if registry is None:
        return 1

    ordered = registry.sequence(_collect_descriptors(registry, args.typeinfo))
    for index, descriptor in enumerate(ordered):
        base = registry.primary_base(descriptor)
        suffix = f"  <- {base}" if base is not None else ""
        print(f"    {index:4d}  {format_address(descriptor.address)}  {descriptor}{suffix}")
    return 0


def main():
    parser = argparse.ArgumentParser(
        prog="rtti_cli",
        description="gccrtti - GNU C++ vtable recovery",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument('binary', help='ELF / PE binary')
    common.add_argument('-t', '--typeinfo', action='append', type=parse_address,
                        help='Typeinfo address (repeatable, hex or decimal)')
    common.add_argument('--backend', choices=VALID_BACKENDS, help='Program backend')
    common.add_argument('--config', help='YAML configuration file')
    common.add_argument('--log-level', choices=VALID_LOG_LEVELS, help='Log level')

    subparsers = parser.add_subparsers(dest='command', help='Command')

    # vtables
    p_vtables = subparsers.add_parser('vtables', parents=[common], help='Resolve vtables')
    p_vtables.add_argument('-v', '--verbose', action='store_true', help='List every slot')
    p_vtables.set_defaults(func=cmd_vtables)

    # order
    p_order = subparsers.add_parser('order', parents=[common], help='Base-before-derived order')
    p_order.set_defaults(func=cmd_order)

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return 0

    try:
        return args.func(args)
    except GccRttiError as e:
        print(f"[-] {format_exception(e)}")
        return 1
    except KeyboardInterrupt:
        print("\n[!] Interrupted")
        return 130


if __name__ == '__main__':
    sys.exit(main())
