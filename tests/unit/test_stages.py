import warnings

import pytest

from src.core.exceptions import BackgroundRemovalError
from src.pipeline.stages import run_background_removal
from tests.fakes import PNG_BYTES, PROCESSED_BYTES, fake_remover


@pytest.mark.asyncio
async def test_background_removal_runs_without_deprecation_warnings():
    with warnings.catch_warnings():
        warnings.simplefilter("error", DeprecationWarning)
        output = await run_background_removal(fake_remover, PNG_BYTES, timeout=5)

    assert output == PROCESSED_BYTES


@pytest.mark.asyncio
async def test_remover_errors_become_background_removal_errors():
    def broken(image_bytes: bytes) -> bytes:
        raise OSError("cannot identify image file")

    with pytest.raises(BackgroundRemovalError) as exc_info:
        await run_background_removal(broken, PNG_BYTES, timeout=5)
    assert exc_info.value.reason == "background_removal_failed"
