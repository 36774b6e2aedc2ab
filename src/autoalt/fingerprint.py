"""Content fingerprints: 64-bit average hashes and their Hamming distance."""

import io
from typing import Optional

import imagehash
from PIL import Image, ImageOps

HASH_SIZE = 8  # 8x8 grid -> 64-bit fingerprint
HASH_BITS = HASH_SIZE * HASH_SIZE


def compute_fingerprint(data: bytes) -> Optional[imagehash.ImageHash]:
    """
    Average-luminance hash of the image content.

    Each bit says whether one cell of an 8x8 grayscale thumbnail is brighter than
    the thumbnail mean. Returns None when the bytes do not decode to pixels.
    """
    try:
        with Image.open(io.BytesIO(data)) as img:
            img = ImageOps.exif_transpose(img)
            if img.width == 0 or img.height == 0:
                return None
            return imagehash.average_hash(img.convert("L"), hash_size=HASH_SIZE)
    except Exception:
        # Any decoder failure (truncated data, unknown format, bomb guard) means
        # "no fingerprint"; the asset then stays a singleton group.
        return None


def hamming_distance(
    a: Optional[imagehash.ImageHash], b: Optional[imagehash.ImageHash]
) -> Optional[int]:
    """Number of differing bits, or None when either side has no fingerprint."""
    if a is None or b is None:
        return None
    return int(a - b)


def fingerprint_hex(fingerprint: Optional[imagehash.ImageHash]) -> Optional[str]:
    return str(fingerprint) if fingerprint is not None else None
