"""
Drawing scale resolution.
"""

from .resolver import (
    ScaleResolver,
    ScaleResult,
    ScaleMethod,
    pixels_per_mm,
    parse_scale_notation,
    compile_patterns,
)

__all__ = [
    "ScaleResolver",
    "ScaleResult",
    "ScaleMethod",
    "pixels_per_mm",
    "parse_scale_notation",
    "compile_patterns",
]
