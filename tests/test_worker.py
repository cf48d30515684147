from concurrent.futures import ThreadPoolExecutor
from unittest.mock import Mock

import pytest

from conftest import solid_pixels
from gallery_scout.worker import COMPUTE_IMAGE_HASH, HashWorker, handle_message


def test_handle_message_success():
    response = handle_message(
        {
            "id": 7,
            "task": COMPUTE_IMAGE_HASH,
            "data": solid_pixels(16, 16),
            "options": {"algorithm": "average", "precision": 4},
        }
    )
    assert response == {"id": 7, "success": True, "result": "0" * 16}


def test_handle_message_unknown_task():
    response = handle_message({"id": 1, "task": "resize", "data": None})
    assert response == {"id": 1, "success": False, "error": "Unknown task: resize"}


def test_handle_message_unknown_algorithm():
    response = handle_message(
        {
            "id": 2,
            "task": COMPUTE_IMAGE_HASH,
            "data": solid_pixels(8, 8),
            "options": {"algorithm": "median"},
        }
    )
    assert response["success"] is False
    assert response["error"] == "Unknown hash algorithm: median"


def test_handle_message_rejects_raw_bytes():
    response = handle_message({"id": 3, "task": COMPUTE_IMAGE_HASH, "data": b"\x00" * 16})
    assert response["success"] is False
    assert "PixelData" in response["error"]


@pytest.mark.asyncio
async def test_worker_round_trip_on_executor():
    with ThreadPoolExecutor(max_workers=1) as executor:
        worker = HashWorker(executor=executor)
        first = await worker.compute_image_hash(solid_pixels(9, 8), "difference", 8)
        second = await worker.submit("unknown", None)
    assert first["success"] is True
    assert first["result"] == "0" * 64
    assert second["id"] == first["id"] + 1
    assert second["success"] is False


def test_worker_only_shuts_down_owned_executor():
    executor = Mock()
    with HashWorker(executor=executor):
        pass
    executor.shutdown.assert_not_called()
