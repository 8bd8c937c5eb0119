"""DAS proof provider."""

from .das_provider import DasProofProvider, decode_hash, extract_image

__all__ = ["DasProofProvider", "decode_hash", "extract_image"]
