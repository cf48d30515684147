"""Process-pool worker for CPU-heavy hashing.

Messages follow a small request/response protocol so the coordinating event
loop never runs hashing inline::

    {"id": ..., "task": "computeImageHash", "data": PixelData, "options": {...}}
    {"id": ..., "success": True, "result": "0101..."}
    {"id": ..., "success": False, "error": "message"}
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from concurrent.futures import Executor, ProcessPoolExecutor
from typing import Any, Callable, Dict, Optional

from .errors import ScoutError
from .hashing import DEFAULT_ALGORITHM, DEFAULT_PRECISION, PixelData, compute_hash

logger = logging.getLogger("gallery_scout")

COMPUTE_IMAGE_HASH = "computeImageHash"


def _compute_image_hash(data: Any, options: Dict[str, Any]) -> str:
    if not isinstance(data, PixelData):
        raise TypeError("computeImageHash expects PixelData")
    return compute_hash(
        data,
        options.get("algorithm", DEFAULT_ALGORITHM),
        int(options.get("precision", DEFAULT_PRECISION)),
    )


TASKS: Dict[str, Callable[[Any, Dict[str, Any]], Any]] = {
    COMPUTE_IMAGE_HASH: _compute_image_hash,
}


def handle_message(message: Dict[str, Any]) -> Dict[str, Any]:
    """Run one task request and wrap the outcome in a response message."""
    request_id = message.get("id")
    task = message.get("task")
    try:
        func = TASKS.get(task)  # type: ignore[arg-type]
        if func is None:
            raise ValueError(f"Unknown task: {task}")
        result = func(message.get("data"), message.get("options") or {})
    except (ScoutError, ValueError, TypeError) as exc:
        return {"id": request_id, "success": False, "error": str(exc)}
    return {"id": request_id, "success": True, "result": result}


class HashWorker:
    """Submit hashing requests to an executor and await their responses."""

    def __init__(self, executor: Optional[Executor] = None, max_workers: int = 2) -> None:
        self._owns_executor = executor is None
        self._executor = executor or ProcessPoolExecutor(max_workers=max_workers)
        self._ids = itertools.count(1)

    async def submit(
        self, task: str, data: Any, options: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        message = {
            "id": next(self._ids),
            "task": task,
            "data": data,
            "options": dict(options or {}),
        }
        loop = asyncio.get_running_loop()
        response = await loop.run_in_executor(self._executor, handle_message, message)
        if not response["success"]:
            logger.debug("Worker task %s #%s failed: %s", task, message["id"], response["error"])
        return response

    async def compute_image_hash(
        self,
        pixels: PixelData,
        algorithm: str = DEFAULT_ALGORITHM,
        precision: int = DEFAULT_PRECISION,
    ) -> Dict[str, Any]:
        return await self.submit(
            COMPUTE_IMAGE_HASH,
            pixels,
            {"algorithm": algorithm, "precision": precision},
        )

    def close(self) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=True)

    def __enter__(self) -> "HashWorker":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
