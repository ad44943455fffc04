__version__ = "0.1.0"

from .dimensions import resize_dimensions
from .pillow_backend import PillowEncoderBackend, pillow_format_for_mime
from .registry import CapabilityRegistry
from .types import EditOperation, EncoderBackend, OperationType, ResizeBox

__all__ = [
    "CapabilityRegistry",
    "EditOperation",
    "EncoderBackend",
    "OperationType",
    "PillowEncoderBackend",
    "ResizeBox",
    "pillow_format_for_mime",
    "resize_dimensions",
]
