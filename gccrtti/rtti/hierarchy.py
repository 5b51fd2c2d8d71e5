# -*- coding: utf-8 -*-
"""
gccrtti/rtti/hierarchy.py

Base-before-derived ordering of classes.

Only the primary (first) base orders a class; further bases do not
constrain the result. Bases outside the input are ignored.
"""

import logging
from typing import Callable, Hashable, Iterable, List, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=Hashable)


def sequence_classes(
    classes: Iterable[T],
    primary_base: Callable[[T], Optional[T]]
) -> List[T]:
    """
    Order ``classes`` so that every class follows its primary base chain.

    Duplicates collapse to their first occurrence, and the input order
    breaks ties. A class whose primary base is already waiting on the
    stack (a cyclic chain) is emitted at once, so cycles terminate.

    Args:
        classes: Classes to order
        primary_base: Returns a class's primary base, or None

    Returns:
        Every input class exactly once
    """
    remaining = dict.fromkeys(classes)
    ordered: List[T] = []

    while remaining:
        stack = [next(iter(remaining))]
        waiting = set()
        while stack:
            current = stack.pop()
            if current not in remaining:
                continue
            base = primary_base(current)
            if base is not None and base in remaining and base not in waiting:
                waiting.add(current)
                stack.append(current)
                stack.append(base)
                continue
            if base is not None and base in waiting:
                logger.debug("Cyclic primary base chain at %s", current)
            ordered.append(current)
            del remaining[current]
            waiting.discard(current)

    return ordered
