"""
AI dispatch client.

Hands jobs to the n8n workflows with one outbound HTTP call each. A 2xx
answer only means the workflow accepted the work; the result comes back
later through one of the completion channels. There are no retries:
a rejected job fails and the user can regenerate it as a new job.
"""
import json

import httpx

from app.config import settings
from app.exceptions import DispatchRejected
from app.logging_config import get_logger
from app.models.job import Description, JobKind, Transformation


log = get_logger(component="dispatch")


def build_callback_url(kind: JobKind, base_url: str | None = None) -> str:
    """Callback address the provider redirects to; it appends id and result."""
    base = (base_url or settings.PUBLIC_BASE_URL).rstrip("/")
    return f"{base}/webhook-callback?type={kind.value}"


class DispatchClient:
    """Client for the n8n transformation and description webhooks."""

    def __init__(
        self,
        transformation_url: str | None = None,
        description_url: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None
    ):
        self.transformation_url = transformation_url or settings.N8N_TRANSFORMATION_WEBHOOK_URL
        self.description_url = description_url or settings.N8N_DESCRIPTION_WEBHOOK_URL
        self.base_url = base_url or settings.PUBLIC_BASE_URL
        self.client = httpx.AsyncClient(
            timeout=timeout or settings.DISPATCH_TIMEOUT_SECONDS,
            transport=transport
        )

    async def close(self):
        await self.client.aclose()

    async def dispatch_transformation(self, job: Transformation, image: bytes) -> dict:
        """
        Send a transformation as multipart/form-data.

        Returns:
            The provider's acknowledgement body (may be empty)

        Raises:
            DispatchRejected: non-2xx answer, network failure or no webhook configured
        """
        data = {
            "transformationId": job.id,
            "style": job.style,
            "callbackUrl": build_callback_url(JobKind.TRANSFORMATION, self.base_url),
        }
        if job.custom_prompt:
            data["prompt"] = job.custom_prompt
        if job.annotations:
            data["annotations"] = json.dumps(job.annotations)

        extension = job.original_image_mime.split("/")[-1]
        files = {"image": (f"image.{extension}", image, job.original_image_mime)}

        log.info(
            "dispatching_transformation",
            job_id=job.id,
            style=job.style,
            image_bytes=len(image)
        )
        return await self._post(JobKind.TRANSFORMATION, job.id, self.transformation_url, data=data, files=files)

    async def dispatch_description(self, job: Description) -> dict:
        """
        Send a description request as a JSON document.

        Raises:
            DispatchRejected: non-2xx answer, network failure or no webhook configured
        """
        payload = {
            "descriptionId": job.id,
            "propertyData": job.property_data,
            "tone": job.tone,
            "lengthOption": job.length_option,
            "language": job.language,
            "sourceImageUrls": job.source_image_urls or [],
            "callbackUrl": build_callback_url(JobKind.DESCRIPTION, self.base_url),
        }

        log.info(
            "dispatching_description",
            job_id=job.id,
            tone=job.tone,
            language=job.language,
            property_type=job.property_data.get("propertyType")
        )
        return await self._post(JobKind.DESCRIPTION, job.id, self.description_url, json=payload)

    async def _post(self, kind: JobKind, job_id: str, url: str | None, **request_kwargs) -> dict:
        if not url:
            raise DispatchRejected(f"No webhook configured for {kind.value} jobs")

        try:
            response = await self.client.post(url, **request_kwargs)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            log.error("dispatch_failed", kind=kind.value, job_id=job_id, error=str(e))
            raise DispatchRejected(f"Could not reach AI provider: {e}") from e

        if not response.is_success:
            log.error(
                "dispatch_rejected",
                kind=kind.value,
                job_id=job_id,
                status_code=response.status_code,
                body=response.text[:500]
            )
            raise DispatchRejected(
                f"AI provider rejected the request with status {response.status_code}",
                status_code=response.status_code
            )

        log.info("dispatch_accepted", kind=kind.value, job_id=job_id, status_code=response.status_code)
        try:
            body = response.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {"response": body}
