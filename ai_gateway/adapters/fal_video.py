"""
fal.ai video adapter (WAN, Veo, Kling, MiniMax through the fal queue).
"""

from typing import Any

from ..models import JobStatus, MediaJob, VideoOptions, VideoResult
from .base import VideoProvider
from .fal import FalQueueMixin


class FalVideoAdapter(FalQueueMixin, VideoProvider):
    """
    Adapter for fal.ai video models.

    Video is metered per second; the duration requested at submit time is
    remembered so the completed job can be priced.
    """

    name: str = "fal-video"

    @staticmethod
    def _body(prompt: str, options: VideoOptions) -> dict[str, Any]:
        body: dict[str, Any] = {
            "prompt": prompt,
            "num_frames": options.duration * options.fps,
        }
        if options.aspect_ratio:
            body["aspect_ratio"] = options.aspect_ratio
        return body

    async def submit(self, prompt: str, options: VideoOptions, model: str) -> MediaJob:
        job_id = await self._submit_job(model, self._body(prompt, options), "generate_video")
        self._remember(job_id, options)
        return MediaJob(job_id=job_id, estimated_cost=0.0, provider=self.name, model=model)

    async def submit_image_to_video(
        self, image_url: str, prompt: str, options: VideoOptions, model: str
    ) -> MediaJob:
        body = self._body(prompt, options)
        body["image_url"] = image_url
        job_id = await self._submit_job(model, body, "image_to_video")
        self._remember(job_id, options)
        return MediaJob(job_id=job_id, estimated_cost=0.0, provider=self.name, model=model)

    async def get_status(self, job_id: str, model: str) -> JobStatus:
        state, payload, error = await self._poll_job(model, job_id)
        if state != "completed":
            return JobStatus(status=state, error=error)

        options: VideoOptions = self._recall(job_id, VideoOptions())
        try:
            video = payload["video"]
            url = video["url"]
        except (KeyError, TypeError) as e:
            raise self._invalid_response(e)
        return JobStatus(
            status="completed",
            result=VideoResult(
                url=url,
                duration=float(payload.get("duration") or options.duration),
                cost=0.0,
                resolution=payload.get("resolution", "720p"),
                job_id=job_id,
            ),
        )
