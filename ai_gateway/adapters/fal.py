"""
fal.ai queue adapters.

fal runs generation asynchronously: a POST to ``queue.fal.run/{model}``
returns a ``request_id``; ``/requests/{id}/status`` reports progress and
``/requests/{id}`` returns the finished payload.
"""

import logging
import time
from collections import OrderedDict
from typing import Any

from ..models import ImageOptions, ImageResult, JobState, JobStatus, MediaJob
from .base import ImageProvider

logger = logging.getLogger(__name__)


FAL_STATUS_MAP: dict[str, JobState] = {
    "IN_QUEUE": "queued",
    "IN_PROGRESS": "in_progress",
    "COMPLETED": "completed",
    "FAILED": "failed",
    "ERROR": "failed",
    "CANCELLED": "failed",
}


class FalQueueMixin:
    """Submit / poll / fetch against the fal queue API."""

    DEFAULT_BASE_URL = "https://queue.fal.run"
    MAX_TRACKED_JOBS = 1024

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        # job_id -> submit options, needed to describe the finished result
        self._jobs: OrderedDict[str, Any] = OrderedDict()

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Key {self.api_key}",
            "Content-Type": "application/json",
        }

    def _remember(self, job_id: str, value: Any) -> None:
        self._jobs[job_id] = value
        while len(self._jobs) > self.MAX_TRACKED_JOBS:
            self._jobs.popitem(last=False)

    def _recall(self, job_id: str, default: Any = None) -> Any:
        return self._jobs.get(job_id, default)

    async def _submit_job(self, model: str, body: dict[str, Any], operation: str) -> str:
        started = time.time()
        request_id = None
        error_message = None
        try:
            with self._upstream_errors():
                response = await self._client.post(
                    f"{self.base_url}/{model}",
                    headers={**self._headers(), "X-Fal-Queue-Mode": "async"},
                    json=body,
                )
                response.raise_for_status()
                data = response.json()
            try:
                request_id = data["request_id"]
            except (KeyError, TypeError) as e:
                raise self._invalid_response(e)
            return request_id
        except Exception as e:
            error_message = str(e)
            raise
        finally:
            self._logger.log_request(
                model=model,
                operation=operation,
                prompt=body.get("prompt"),
                response_text=request_id,
                input_units=None,
                output_units=None,
                duration_ms=(time.time() - started) * 1000,
                success=request_id is not None,
                error_message=error_message,
            )

    async def _poll_job(self, model: str, job_id: str) -> tuple[JobState, dict[str, Any] | None, str | None]:
        """Returns (state, result payload when completed, error when failed)."""
        with self._upstream_errors("status"):
            response = await self._client.get(
                f"{self.base_url}/{model}/requests/{job_id}/status",
                headers=self._headers(),
            )
            response.raise_for_status()
            data = response.json()

        raw_status = str(data.get("status", "")).upper()
        state = FAL_STATUS_MAP.get(raw_status)
        if state is None:
            logger.warning("Unknown fal job status %r for %s", raw_status, job_id)
            state = "in_progress"

        if state == "failed":
            return state, None, str(data.get("error") or f"job {raw_status.lower()}")
        if state != "completed":
            return state, None, None

        payload = data.get("response")
        if payload is None:
            with self._upstream_errors("result"):
                response = await self._client.get(
                    f"{self.base_url}/{model}/requests/{job_id}",
                    headers=self._headers(),
                )
                response.raise_for_status()
                payload = response.json()
        return state, payload, None


class FalImageAdapter(FalQueueMixin, ImageProvider):
    """Adapter for fal.ai image models (FLUX family)."""

    name: str = "fal"

    async def submit(self, prompt: str, options: ImageOptions, model: str) -> MediaJob:
        body: dict[str, Any] = {
            "prompt": prompt,
            "num_images": options.num_images,
        }
        if options.width and options.height:
            body["image_size"] = {"width": options.width, "height": options.height}
        if options.negative_prompt:
            body["negative_prompt"] = options.negative_prompt
        if options.seed is not None:
            body["seed"] = options.seed

        job_id = await self._submit_job(model, body, "generate_image")
        self._remember(job_id, options)
        return MediaJob(job_id=job_id, estimated_cost=0.0, provider=self.name, model=model)

    async def get_status(self, job_id: str, model: str) -> JobStatus:
        state, payload, error = await self._poll_job(model, job_id)
        if state != "completed":
            return JobStatus(status=state, error=error)

        options: ImageOptions = self._recall(job_id, ImageOptions())
        try:
            images = payload["images"]
            first = images[0]
        except (KeyError, IndexError, TypeError) as e:
            raise self._invalid_response(e)
        return JobStatus(
            status="completed",
            result=ImageResult(
                url=first["url"],
                width=first.get("width") or options.width or 1024,
                height=first.get("height") or options.height or 1024,
                cost=0.0,
                units=len(images),
                seed=payload.get("seed", options.seed),
            ),
        )
