"""
Stability AI image adapter.

Stability generates synchronously, so ``submit`` already holds the image;
the result is kept (bounded) and served by ``get_status`` to fit the
submit/poll contract.
"""

import base64
import time
import uuid
from collections import OrderedDict
from typing import Any

from ..models import ImageOptions, ImageResult, JobStatus, MediaJob
from .base import ImageProvider


ENDPOINTS = {
    "stable-image-ultra": "/stable-image/generate/ultra",
    "stable-image-core": "/stable-image/generate/core",
    "sd3.5-large": "/stable-image/generate/sd3",
    "sd3.5-medium": "/stable-image/generate/sd3",
}


def aspect_ratio(width: int | None, height: int | None) -> str:
    """Closest supported aspect ratio for the requested size."""
    if not width or not height:
        return "1:1"
    ratio = width / height
    if ratio > 1.7:
        return "16:9"
    if ratio > 1.3:
        return "3:2"
    if ratio > 1.1:
        return "4:3"
    if ratio > 0.9:
        return "1:1"
    if ratio > 0.7:
        return "3:4"
    if ratio > 0.55:
        return "2:3"
    return "9:16"


class StabilityAdapter(ImageProvider):
    """Adapter for Stability AI (Stable Image / SD3.5)."""

    name: str = "stability"
    DEFAULT_BASE_URL = "https://api.stability.ai/v2beta"
    MAX_STORED_RESULTS = 256

    def __init__(self, api_key: str, base_url: str | None = None, **kwargs):
        super().__init__(api_key, base_url, **kwargs)
        self._results: OrderedDict[str, ImageResult] = OrderedDict()

    async def submit(self, prompt: str, options: ImageOptions, model: str) -> MediaJob:
        form: dict[str, Any] = {
            "prompt": prompt,
            "output_format": "png",
            "aspect_ratio": aspect_ratio(options.width, options.height),
        }
        endpoint = ENDPOINTS.get(model, "/stable-image/generate/sd3")
        if endpoint.endswith("/sd3"):
            form["model"] = model if model in ENDPOINTS else "sd3.5-large"
        if options.negative_prompt:
            form["negative_prompt"] = options.negative_prompt
        if options.seed is not None:
            form["seed"] = str(options.seed)
        if options.style:
            form["style_preset"] = options.style

        started = time.time()
        result = None
        error_message = None
        try:
            with self._upstream_errors():
                response = await self._client.post(
                    f"{self.base_url}{endpoint}",
                    headers={"Authorization": f"Bearer {self.api_key}", "Accept": "image/*"},
                    data=form,
                    # forces multipart/form-data, which the API requires
                    files={"none": ""},
                )
                response.raise_for_status()

            encoded = base64.b64encode(response.content).decode("ascii")
            seed = response.headers.get("seed")
            result = ImageResult(
                url=f"data:image/png;base64,{encoded}",
                width=options.width or 1024,
                height=options.height or 1024,
                cost=0.0,
                units=1,
                seed=int(seed) if seed and seed.isdigit() else options.seed,
            )
        except Exception as e:
            error_message = str(e)
            raise
        finally:
            self._logger.log_request(
                model=model,
                operation="generate_image",
                prompt=prompt,
                response_text=None,
                input_units=None,
                output_units=1 if result else None,
                duration_ms=(time.time() - started) * 1000,
                success=result is not None,
                error_message=error_message,
            )

        job_id = f"stability-{uuid.uuid4().hex}"
        self._results[job_id] = result
        while len(self._results) > self.MAX_STORED_RESULTS:
            self._results.popitem(last=False)
        return MediaJob(job_id=job_id, estimated_cost=0.0, provider=self.name, model=model)

    async def get_status(self, job_id: str, model: str) -> JobStatus:
        result = self._results.get(job_id)
        if result is None:
            return JobStatus(status="failed", error=f"unknown or expired job: {job_id}")
        return JobStatus(status="completed", result=result)
