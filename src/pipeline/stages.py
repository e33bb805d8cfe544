"""
Pipeline Stage Implementations

Background removal is treated as an opaque function: image bytes in,
PNG bytes out, or an exception. The async wrapper runs it in a worker thread
under a timeout so a hung model cannot stall the drain.
"""

import io
import asyncio
from typing import Callable
from datetime import datetime, timezone

from PIL import Image

from src.core.logging import get_logger
from src.core.metrics import track_stage_latency
from src.core.exceptions import BackgroundRemovalError

logger = get_logger(__name__)

BackgroundRemover = Callable[[bytes], bytes]


# =============================================================================
# Background Removal (Rembg)
# =============================================================================

def remove_background(image_bytes: bytes) -> bytes:
    """
    Remove background from image using rembg.

    Args:
        image_bytes: Input image as bytes (any format Pillow can open)

    Returns:
        Processed image as PNG bytes with an alpha channel
    """
    # Lazy import: the model session is heavy and only the worker needs it
    from rembg import remove

    input_image = Image.open(io.BytesIO(image_bytes))
    output_image = remove(input_image)

    output_buffer = io.BytesIO()
    output_image.save(output_buffer, format="PNG")
    return output_buffer.getvalue()


async def run_background_removal(
    remover: BackgroundRemover,
    image_bytes: bytes,
    timeout: float
) -> bytes:
    """
    Run ``remover`` off the event loop, bounded by ``timeout`` seconds.

    Raises:
        BackgroundRemovalError: on timeout, on an exception from the remover,
            or when it returns no bytes
    """
    start_time = datetime.now(timezone.utc)
    logger.info("rembg_starting", input_size=len(image_bytes))

    try:
        with track_stage_latency("rembg"):
            output_bytes = await asyncio.wait_for(
                asyncio.to_thread(remover, image_bytes),
                timeout=timeout
            )
    except asyncio.TimeoutError as e:
        raise BackgroundRemovalError(f"Background removal timed out after {timeout:g}s") from e
    except BackgroundRemovalError:
        raise
    except Exception as e:
        raise BackgroundRemovalError(f"Background removal failed: {e}") from e

    if not output_bytes:
        raise BackgroundRemovalError("Background removal returned no data")

    duration_ms = int((datetime.now(timezone.utc) - start_time).total_seconds() * 1000)
    logger.info(
        "rembg_completed",
        duration_ms=duration_ms,
        input_size=len(image_bytes),
        output_size=len(output_bytes)
    )
    return bytes(output_bytes)
