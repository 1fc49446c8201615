# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Process-wide request transform hooks.

A transform receives an outgoing ContextRequest and returns the request to
send instead. Injection is enabled by registering a transform and disabled by
unregistering it; nothing else holds global state.

Usage:
    register_transform(service.inject_context)
    request = apply_transforms(ContextRequest(prompt, document_path, line=12))
    unregister_transform(service.inject_context)
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Tuple

logger = logging.getLogger(__name__)


@dataclass
class ContextRequest:
    """An outgoing request issued from a position in an outline document."""

    prompt: str
    document_path: Path
    line: Optional[int] = None
    heading_path: Optional[Tuple[str, ...]] = None


RequestTransform = Callable[[ContextRequest], ContextRequest]

_transforms: List[RequestTransform] = []


def register_transform(transform: RequestTransform) -> None:
    """Add a transform. Registering the same transform twice is a no-op."""
    if transform in _transforms:
        return
    _transforms.append(transform)
    logger.debug(f"Registered request transform {transform!r}")


def unregister_transform(transform: RequestTransform) -> None:
    """Remove a transform. Unknown transforms are ignored."""
    if transform in _transforms:
        _transforms.remove(transform)
        logger.debug(f"Unregistered request transform {transform!r}")


def registered_transforms() -> List[RequestTransform]:
    """Snapshot of the registered transforms, in application order."""
    return list(_transforms)


def apply_transforms(request: ContextRequest) -> ContextRequest:
    """Run every registered transform in registration order."""
    for transform in list(_transforms):
        request = transform(request)
    return request
