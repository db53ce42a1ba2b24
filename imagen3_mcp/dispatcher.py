"""Tool registry and dispatcher for the ``generate_image`` MCP tool.

The dispatcher owns the tool's public description, validates raw tool-call
arguments, hands a GenerationRequest to the image client and turns whatever
comes back into exactly one ToolResponse. It never raises past ``invoke``.
"""
from __future__ import annotations

import asyncio
import base64
import copy
import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple

from fastmcp.utilities.logging import get_logger
from mcp.types import ImageContent

from .config import Credentials, Settings
from .core import (
    ASPECT_RATIOS,
    DEFAULT_ASPECT_RATIO,
    DEFAULT_SAMPLE_COUNT,
    MAX_SAMPLE_COUNT,
    MIN_SAMPLE_COUNT,
    ErrorKind,
    GeneratedImage,
    GenerationFailure,
    GenerationRequest,
    GenerationResult,
    ImageGenerationClient,
    ValidationError,
)

logger = get_logger(__name__)

TOOL_NAME = "generate_image"
TOOL_DESCRIPTION = (
    "Generate an image from a text prompt using Google Imagen 3. "
    "The image is returned inline. The prompt MUST be in English."
)

# Extra time allowed on top of the HTTP timeout before an async call is abandoned
DEADLINE_GRACE_SECONDS = 5.0

_INPUT_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "prompt": {
            "type": "string",
            "minLength": 1,
            "description": (
                "Description of the image to generate, in English. "
                "Describe the subject, its context and the desired style."
            ),
        },
        "aspect_ratio": {
            "type": "string",
            "enum": list(ASPECT_RATIOS),
            "default": DEFAULT_ASPECT_RATIO,
            "description": "Aspect ratio of the generated image.",
        },
        "sample_count": {
            "type": "integer",
            "minimum": MIN_SAMPLE_COUNT,
            "maximum": MAX_SAMPLE_COUNT,
            "default": DEFAULT_SAMPLE_COUNT,
            "description": "Number of images to generate.",
        },
    },
    "required": ["prompt"],
    "additionalProperties": False,
}


@dataclass(frozen=True)
class ToolSpec:
    """What the host learns about the tool at connection setup."""
    name: str
    description: str
    input_schema: Dict[str, Any]


@dataclass(frozen=True)
class ToolResponse:
    """Protocol-shaped outcome of one tool invocation."""
    images: Tuple[GeneratedImage, ...] = ()
    error_kind: Optional[ErrorKind] = None
    error_message: str = ""

    @classmethod
    def success(cls, images: Tuple[GeneratedImage, ...]) -> "ToolResponse":
        return cls(images=tuple(images))

    @classmethod
    def failure(cls, kind: ErrorKind, message: str) -> "ToolResponse":
        return cls(error_kind=kind, error_message=message)

    @property
    def is_error(self) -> bool:
        return self.error_kind is not None

    def to_content(self) -> List[ImageContent]:
        """Inline image content blocks, one per generated image."""
        return [
            ImageContent(
                type="image",
                data=base64.b64encode(image.data).decode("ascii"),
                mimeType=image.mime_type,
            )
            for image in self.images
        ]

    def error_text(self) -> str:
        """Human readable error prefixed with its kind, e.g. ``RequestRejected: ...``."""
        if self.error_kind is None:
            return ""
        return f"{self.error_kind.value}: {self.error_message}"


def describe() -> ToolSpec:
    """Return the tool's name, description and input schema."""
    return ToolSpec(
        name=TOOL_NAME,
        description=TOOL_DESCRIPTION,
        input_schema=copy.deepcopy(_INPUT_SCHEMA),
    )


def validate_arguments(arguments: Any) -> GenerationRequest:
    """Check a raw tool-call payload and build a GenerationRequest.

    ``None`` for an optional parameter means "use the default".

    Raises:
        ValidationError: If the payload is not an object, has unknown keys, or
            the prompt is missing, not a string or blank, or a parameter is
            outside its allowed values.
    """
    if not isinstance(arguments, Mapping):
        raise ValidationError("Tool arguments must be an object.")

    unknown = sorted(str(key) for key in arguments if key not in _INPUT_SCHEMA["properties"])
    if unknown:
        raise ValidationError(f"Unknown argument(s): {', '.join(unknown)}.")

    prompt = arguments.get("prompt")
    if prompt is None:
        raise ValidationError("Missing required argument 'prompt'.")
    if not isinstance(prompt, str):
        raise ValidationError("Argument 'prompt' must be a string.")

    aspect_ratio = arguments.get("aspect_ratio")
    if aspect_ratio is None:
        aspect_ratio = DEFAULT_ASPECT_RATIO
    sample_count = arguments.get("sample_count")
    if sample_count is None:
        sample_count = DEFAULT_SAMPLE_COUNT

    return GenerationRequest(prompt=prompt.strip(), aspect_ratio=aspect_ratio, sample_count=sample_count)


class ToolDispatcher:
    """Routes ``generate_image`` calls to an image client.

    Args:
        client: Object with a ``generate(image_request, credentials)`` method.
        credentials: Read-only credential passed into every client call.
        deadline: Overall time budget for ``ainvoke`` in seconds, or None for
            no limit beyond the client's own timeout.
    """

    def __init__(self, client: Any, credentials: Credentials, *, deadline: Optional[float] = None) -> None:
        self._client = client
        self._credentials = credentials
        self.deadline = deadline

    @classmethod
    def from_settings(cls, settings: Settings) -> "ToolDispatcher":
        return cls(
            ImageGenerationClient.from_settings(settings),
            settings.credentials,
            deadline=settings.timeout + DEADLINE_GRACE_SECONDS,
        )

    def describe(self) -> ToolSpec:
        return describe()

    def invoke(self, arguments: Any, cancelled: Optional[threading.Event] = None) -> ToolResponse:
        """Run one tool call synchronously and always return a ToolResponse.

        ``cancelled`` is forwarded to the client, which discards the upstream
        response once the event is set.
        """
        try:
            image_request = validate_arguments(arguments)
        except ValidationError as exc:
            logger.info("Rejected tool call: %s", exc)
            return ToolResponse.failure(ErrorKind.VALIDATION_ERROR, str(exc))

        extra = {} if cancelled is None else {"cancelled": cancelled}
        try:
            result = self._client.generate(image_request, self._credentials, **extra)
            return self._respond(result)
        except Exception:  # pylint: disable=broad-exception-caught
            logger.exception("Unexpected error while generating image")
            return ToolResponse.failure(
                ErrorKind.INTERNAL_ERROR,
                "Unexpected error while generating the image; see the server log for details.",
            )

    async def ainvoke(self, arguments: Any) -> ToolResponse:
        """Run ``invoke`` in a worker thread, bounded by ``deadline``.

        Cancelling the awaiting task propagates CancelledError. On cancellation
        or when the deadline passes, the worker thread cannot be interrupted
        mid-request, so a cancel event is set instead: the client drops the
        late response without parsing or logging it.
        """
        cancelled = threading.Event()
        call = asyncio.to_thread(self.invoke, arguments, cancelled)
        try:
            if self.deadline is None:
                return await call
            return await asyncio.wait_for(call, timeout=self.deadline)
        except asyncio.CancelledError:
            cancelled.set()
            raise
        except asyncio.TimeoutError:
            cancelled.set()
            logger.warning("Image generation did not finish within %gs", self.deadline)
            return ToolResponse.failure(
                ErrorKind.TRANSIENT_UPSTREAM_ERROR,
                f"Image generation did not finish within {self.deadline:g} seconds.",
            )

    @staticmethod
    def _respond(result: GenerationResult) -> ToolResponse:
        if isinstance(result, GenerationFailure):
            return ToolResponse.failure(result.kind, result.message)
        return ToolResponse.success(result.images)


__all__ = [
    "DEADLINE_GRACE_SECONDS",
    "TOOL_DESCRIPTION",
    "TOOL_NAME",
    "ToolDispatcher",
    "ToolResponse",
    "ToolSpec",
    "describe",
    "validate_arguments",
]
