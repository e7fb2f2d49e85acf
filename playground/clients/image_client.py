"""
Image generation client and background queue.

ImageClient issues the proxy's non-streaming txt2img/img2img calls, each
wrapped in the rate-limit RetryPolicy. GenerationQueue tracks the tasks that
are in flight and drops them once they finish.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx
from pydantic import ValidationError

from playground.clients.llm_client import build_http_client
from playground.clients.models import (
    GenerationMode,
    GenerationTask,
    ImageResult,
    TaskStatus,
    label_reference_images,
)
from playground.clients.retry import HTTP_TOO_MANY_REQUESTS, RetryPolicy
from playground.config import Configuration
from playground.errors import ChatValidationError, RateLimitError, TransportError

logger = logging.getLogger(__name__)

DEFAULT_IMAGE_MODEL = "gemini-3-pro-image"
MAX_REFERENCE_IMAGES = 14


class ImageClient:
    """Text-to-image and image-to-image calls against the proxy's SD-compatible API."""

    def __init__(
        self,
        configuration: Configuration,
        retry: RetryPolicy | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.configuration = configuration
        self.retry = retry or RetryPolicy.from_config(configuration)
        self.client = build_http_client(configuration, transport)

        images_config = configuration.get_config_value(["images"], {})
        self.txt2img_path = images_config.get("txt2img_path", "/sdapi/v1/txt2img")
        self.img2img_path = images_config.get("img2img_path", "/sdapi/v1/img2img")
        self.default_model = configuration.get_image_config()["default_model"]

    async def generate(self, prompt: str, model: str | None = None) -> ImageResult:
        """Text to image generation (with retry)."""
        payload = {"prompt": prompt, "model": model or self.default_model}
        return await self.retry.run(
            lambda: self._post(self.txt2img_path, payload, "Image generation failed"),
            name="Text-to-Image",
        )

    async def transform(self, prompt: str, images: list[str], model: str | None = None) -> ImageResult:
        """Image to image transformation (with retry). ``images`` keeps upload order."""
        payload = {"prompt": prompt, "init_images": list(images), "model": model or self.default_model}
        return await self.retry.run(
            lambda: self._post(self.img2img_path, payload, "Image transformation failed"),
            name="Image-to-Image",
        )

    async def _post(self, path: str, payload: dict[str, Any], failure: str) -> ImageResult:
        logger.info(f"→ Images: POST {path} model={payload['model']} prompt={payload['prompt'][:50]!r}")
        try:
            response = await self.client.post(path, json=payload)
        except httpx.HTTPError as e:
            logger.error(f"{failure}: {e}")
            raise TransportError(f"{failure} (Network Error)") from e

        if response.is_success:
            try:
                result = ImageResult.model_validate(response.json())
            except (ValueError, ValidationError) as e:
                logger.error(f"{failure}: unreadable response body ({type(e).__name__})")
                raise TransportError(f"{failure}: invalid response body", response.status_code) from e
            logger.info(f"← Images: {len(result.images)} image(s) returned")
            return result

        message = self._error_message(response) or f"{failure} ({response.status_code})"
        logger.error(f"{failure}: status={response.status_code}, message={message}")
        if response.status_code == HTTP_TOO_MANY_REQUESTS:
            raise RateLimitError(message)
        raise TransportError(message, response.status_code)

    @staticmethod
    def _error_message(response: httpx.Response) -> str | None:
        try:
            body = response.json()
        except ValueError:
            return None
        if isinstance(body, dict) and body.get("error"):
            error = body["error"]
            # OpenAI-style {"error": {"message": ...}} as well as a plain string
            if isinstance(error, dict):
                return str(error.get("message") or error)
            return str(error)
        return None

    async def close(self) -> None:
        await self.client.aclose()


class GenerationQueue:
    """Runs image generation tasks and tracks the ones still in flight."""

    def __init__(self, client: ImageClient, max_reference_images: int = MAX_REFERENCE_IMAGES) -> None:
        self.client = client
        self.max_reference_images = max_reference_images
        self._tasks: dict[str, GenerationTask] = {}

    @property
    def pending(self) -> list[GenerationTask]:
        """In-flight tasks, oldest first."""
        return [task.model_copy() for task in self._tasks.values()]

    def create_task(
        self,
        prompt: str,
        model: str | None = None,
        mode: GenerationMode = "txt2img",
        reference_images: list[str] | None = None,
    ) -> GenerationTask:
        """
        Validate a request and build its task.

        Raises:
            ChatValidationError: Empty prompt, or img2img without 1..max reference images
        """
        prompt = prompt.strip()
        reference_images = list(reference_images or [])
        if not prompt:
            raise ChatValidationError("Prompt cannot be empty")

        if mode == "img2img":
            if not reference_images:
                raise ChatValidationError("Please upload at least one image")
            if len(reference_images) > self.max_reference_images:
                raise ChatValidationError(f"At most {self.max_reference_images} reference images are supported")
            sent_prompt = label_reference_images(prompt, len(reference_images))
        else:
            reference_images = []
            sent_prompt = prompt

        return GenerationTask(
            prompt=sent_prompt,
            original_prompt=prompt,
            model=model or self.client.default_model,
            mode=mode,
            reference_images=reference_images,
        )

    async def submit(
        self,
        prompt: str,
        model: str | None = None,
        mode: GenerationMode = "txt2img",
        reference_images: list[str] | None = None,
    ) -> ImageResult:
        """
        Generate an image and return the result.

        The task is visible in ``pending`` until it completes or fails for good.

        Raises:
            ChatValidationError: If the request is invalid
            TransportError: If generation fails (after rate-limit retries)
        """
        task = self.create_task(prompt, model, mode, reference_images)
        self._tasks[task.id] = task
        logger.info(f"Queued {task.mode} task {task.id} ({len(self._tasks)} in flight)")

        try:
            task.status = TaskStatus.RUNNING
            if task.mode == "txt2img":
                result = await self.client.generate(task.prompt, task.model)
            else:
                result = await self.client.transform(task.prompt, task.reference_images, task.model)
            task.status = TaskStatus.COMPLETED
            if not result.images:
                logger.warning(f"Task {task.id} completed without images")
            return result
        except (TransportError, asyncio.CancelledError) as e:
            task.status = TaskStatus.FAILED
            task.error = str(e) or type(e).__name__
            raise
        finally:
            self._tasks.pop(task.id, None)
            logger.debug(f"Task {task.id} finished with status {task.status.value}")
