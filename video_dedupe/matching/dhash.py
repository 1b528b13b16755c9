import io

from PIL import Image, UnidentifiedImageError

from .. import config
from ..exceptions import InvalidImageError

def hamming_distance(a: int, b: int) -> int:
    """Number of differing bits between two 64-bit fingerprints."""
    return (a ^ b).bit_count()

class FrameHasher:
    def compute_hash(self, image_bytes: bytes) -> int:
        """
        Computes a 64-bit difference hash (dHash) for an encoded image.

        Strategy:
        1. Decode and reduce to a 9x8 grayscale grid.
        2. For each of the 8 rows compare the 8 horizontal neighbour pairs.
        3. Bit (row * 8 + col) is set when the left pixel is brighter.

        Uniform brightness shifts leave the hash unchanged; crops and
        letterboxing do not.
        """
        if not image_bytes:
            raise InvalidImageError("Image buffer is empty.")

        try:
            with Image.open(io.BytesIO(image_bytes)) as img:
                small = img.convert("L").resize(
                    (config.HASH_WIDTH, config.HASH_HEIGHT),
                    Image.Resampling.LANCZOS,
                )
        except (UnidentifiedImageError, OSError, ValueError) as e:
            raise InvalidImageError(f"Cannot decode image: {e}") from e

        # Mode 'L' is one byte per pixel, row-major.
        pixels = small.tobytes()
        width = config.HASH_WIDTH

        value = 0
        bit = 0
        for y in range(config.HASH_HEIGHT):
            row = y * width
            for x in range(width - 1):
                if pixels[row + x] > pixels[row + x + 1]:
                    value |= 1 << bit
                bit += 1
        return value
