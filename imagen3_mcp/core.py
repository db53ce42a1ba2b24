"""Image generation client for the Imagen 3 MCP server.

This module provides:
- The request/result types shared with the tool dispatcher
- Request construction for the Imagen ``predict`` endpoint
- A single authenticated HTTP exchange per call (standard library only)
- Mapping of every upstream outcome to a GenerationResult

The client never raises for upstream conditions. Network failures, HTTP error
statuses and malformed bodies all come back as a GenerationFailure.
"""
from __future__ import annotations

import base64
import binascii
import enum
import http.client
import json
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple, Union
from urllib import error, request

from fastmcp.utilities.logging import get_logger

from .config import DEFAULT_BASE_URL, DEFAULT_MODEL_ID, DEFAULT_TIMEOUT_SECONDS, Credentials, Settings

logger = get_logger(__name__)

DEFAULT_MIME_TYPE = "image/png"

# Generation parameters accepted by Imagen 3
ASPECT_RATIOS = ("1:1", "3:4", "4:3", "9:16", "16:9")
DEFAULT_ASPECT_RATIO = "1:1"
MIN_SAMPLE_COUNT = 1
MAX_SAMPLE_COUNT = 4
DEFAULT_SAMPLE_COUNT = 1

# Upper bound on upstream error text copied into failure messages
_DETAIL_LIMIT = 400


class ValidationError(ValueError):
    """Raised when tool arguments cannot form a GenerationRequest."""


class ErrorKind(str, enum.Enum):
    """Failure categories surfaced to the calling agent."""
    VALIDATION_ERROR = "ValidationError"
    REQUEST_REJECTED = "RequestRejected"
    QUOTA_EXCEEDED = "QuotaExceeded"
    CONTENT_BLOCKED = "ContentBlocked"
    UPSTREAM_PROTOCOL_ERROR = "UpstreamProtocolError"
    TRANSIENT_UPSTREAM_ERROR = "TransientUpstreamError"
    INTERNAL_ERROR = "InternalError"

    @property
    def retryable(self) -> bool:
        """Whether repeating the same call later may succeed."""
        return self in (ErrorKind.TRANSIENT_UPSTREAM_ERROR, ErrorKind.QUOTA_EXCEEDED)


@dataclass(frozen=True)
class GenerationRequest:
    """One prompt plus its generation parameters."""
    prompt: str
    aspect_ratio: str = DEFAULT_ASPECT_RATIO
    sample_count: int = DEFAULT_SAMPLE_COUNT

    def __post_init__(self) -> None:
        if not isinstance(self.prompt, str) or not self.prompt.strip():
            raise ValidationError("Prompt is required and must be a non-empty string.")
        if self.aspect_ratio not in ASPECT_RATIOS:
            raise ValidationError(
                f"Unsupported aspect_ratio {self.aspect_ratio!r}. Supported: {', '.join(ASPECT_RATIOS)}"
            )
        if (
            isinstance(self.sample_count, bool)
            or not isinstance(self.sample_count, int)
            or not MIN_SAMPLE_COUNT <= self.sample_count <= MAX_SAMPLE_COUNT
        ):
            raise ValidationError(
                f"sample_count must be an integer between {MIN_SAMPLE_COUNT} and {MAX_SAMPLE_COUNT}."
            )


@dataclass(frozen=True)
class GeneratedImage:
    """Decoded image bytes and their MIME type."""
    data: bytes
    mime_type: str = DEFAULT_MIME_TYPE


@dataclass(frozen=True)
class GenerationSuccess:
    """Upstream returned at least one image."""
    images: Tuple[GeneratedImage, ...]

    @property
    def data(self) -> bytes:
        return self.images[0].data

    @property
    def mime_type(self) -> str:
        return self.images[0].mime_type


@dataclass(frozen=True)
class GenerationFailure:
    """Upstream exchange did not produce an image."""
    kind: ErrorKind
    message: str
    status: Optional[int] = None

    @property
    def retryable(self) -> bool:
        return self.kind.retryable


GenerationResult = Union[GenerationSuccess, GenerationFailure]


def build_url(*, base_url: str = DEFAULT_BASE_URL, model_id: str = DEFAULT_MODEL_ID) -> str:
    """Build the Imagen predict endpoint URL."""
    base = base_url.rstrip("/")
    return f"{base}/v1beta/models/{model_id}:predict"


def build_request_body(image_request: GenerationRequest) -> Dict[str, Any]:
    """Build the JSON body for the Imagen predict endpoint."""
    return {
        "instances": [{"prompt": image_request.prompt}],
        "parameters": {
            "sampleCount": image_request.sample_count,
            "aspectRatio": image_request.aspect_ratio,
            # Filtered samples come back with a reason instead of being omitted
            "includeRaiReason": True,
        },
    }


def _http_post_json(url: str, payload: Dict[str, Any], api_key: str, timeout: float) -> Tuple[int, bytes]:
    """POST a JSON payload and return the status code and raw body.

    HTTP error statuses are returned, not raised. Network level failures
    (URLError, timeouts, broken connections) propagate to the caller.
    """
    data = json.dumps(payload).encode("utf-8")
    req = request.Request(
        url,
        data=data,
        headers={
            "Content-Type": "application/json",
            "x-goog-api-key": api_key,
        },
        method="POST",
    )
    try:
        with request.urlopen(req, timeout=timeout) as resp:
            return resp.status, resp.read()
    except error.HTTPError as exc:
        detail = exc.read() if hasattr(exc, "read") else b""
        return exc.code, detail or b""


def _upstream_error_detail(body: bytes) -> Tuple[Optional[str], str]:
    """Extract (machine-readable status, message) from a Google API error body."""
    try:
        payload = json.loads(body.decode("utf-8"))
    except ValueError:
        payload = None

    if isinstance(payload, dict) and isinstance(payload.get("error"), dict):
        err = payload["error"]
        status = err.get("status") if isinstance(err.get("status"), str) else None
        message = err.get("message") if isinstance(err.get("message"), str) else ""
        return status, message[:_DETAIL_LIMIT]

    return None, body.decode("utf-8", errors="ignore").strip()[:_DETAIL_LIMIT]


def _failure_from_status(status: int, body: bytes) -> GenerationFailure:
    """Map a non-2xx response to a failure kind."""
    code, message = _upstream_error_detail(body)
    detail = f"{code}: {message}" if code and message else (code or message or "no details")

    if 500 <= status < 600:
        return GenerationFailure(
            ErrorKind.TRANSIENT_UPSTREAM_ERROR,
            f"Image service unavailable (HTTP {status}): {detail}",
            status,
        )
    if status == 429 or code == "RESOURCE_EXHAUSTED":
        return GenerationFailure(
            ErrorKind.QUOTA_EXCEEDED,
            f"Image service quota exceeded (HTTP {status}): {detail}",
            status,
        )
    if 400 <= status < 500:
        return GenerationFailure(
            ErrorKind.REQUEST_REJECTED,
            f"Image service rejected the request (HTTP {status}): {detail}",
            status,
        )
    return GenerationFailure(
        ErrorKind.UPSTREAM_PROTOCOL_ERROR,
        f"Unexpected HTTP status {status} from image service.",
        status,
    )


def _buffer_from_inline(data: str) -> bytes:
    """Decode base64 image data."""
    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError(f"Unable to decode image data: {exc}") from exc


def parse_predict_response(body: bytes, status: int = 200) -> GenerationResult:
    """Turn a successful predict response body into a GenerationResult.

    Every prediction carrying ``bytesBase64Encoded`` becomes an image. When the
    only predictions present were filtered by the responsible-AI checks the
    result is a CONTENT_BLOCKED failure carrying the upstream reasons. Anything
    else that does not match the documented shape is an upstream protocol error.
    """
    try:
        payload = json.loads(body.decode("utf-8"))
    except ValueError:
        return GenerationFailure(
            ErrorKind.UPSTREAM_PROTOCOL_ERROR,
            "Image service returned a response that is not valid JSON.",
            status,
        )
    if not isinstance(payload, dict):
        return GenerationFailure(
            ErrorKind.UPSTREAM_PROTOCOL_ERROR,
            "Image service returned an unexpected JSON document.",
            status,
        )

    predictions = payload.get("predictions")
    if not predictions:
        return GenerationFailure(
            ErrorKind.UPSTREAM_PROTOCOL_ERROR,
            "No images were generated: the response has no predictions.",
            status,
        )
    if not isinstance(predictions, list):
        return GenerationFailure(
            ErrorKind.UPSTREAM_PROTOCOL_ERROR,
            "Image service returned predictions in an unexpected format.",
            status,
        )

    images: List[GeneratedImage] = []
    filtered: List[str] = []
    for prediction in predictions:
        if not isinstance(prediction, dict):
            return GenerationFailure(
                ErrorKind.UPSTREAM_PROTOCOL_ERROR,
                "Image service returned a prediction that is not an object.",
                status,
            )
        encoded = prediction.get("bytesBase64Encoded")
        if isinstance(encoded, str) and encoded:
            try:
                buffer = _buffer_from_inline(encoded)
            except ValueError as exc:
                return GenerationFailure(ErrorKind.UPSTREAM_PROTOCOL_ERROR, str(exc), status)
            mime_type = prediction.get("mimeType")
            if not isinstance(mime_type, str) or not mime_type:
                mime_type = DEFAULT_MIME_TYPE
            images.append(GeneratedImage(data=buffer, mime_type=mime_type))
        elif prediction.get("raiFilteredReason"):
            filtered.append(str(prediction["raiFilteredReason"]))
        else:
            return GenerationFailure(
                ErrorKind.UPSTREAM_PROTOCOL_ERROR,
                "Prediction is missing the bytesBase64Encoded image field.",
                status,
            )

    if images:
        if filtered:
            logger.info("%d of %d samples were filtered by the image service", len(filtered), len(predictions))
        return GenerationSuccess(images=tuple(images))
    return GenerationFailure(
        ErrorKind.CONTENT_BLOCKED,
        "The prompt was blocked by the image service: " + "; ".join(filtered),
        status,
    )


def _describe_network_error(exc: BaseException, timeout: float) -> str:
    reason = getattr(exc, "reason", exc)
    if isinstance(exc, TimeoutError) or isinstance(reason, TimeoutError):
        return f"Image service did not respond within {timeout:g} seconds."
    return f"Network error contacting image service: {reason}"


class ImageGenerationClient:
    """Sends GenerationRequests to the Imagen predict endpoint.

    The client keeps only its fixed endpoint configuration. Each ``generate``
    call is a single attempt with its own request data, so one instance can
    serve concurrent calls.
    """

    def __init__(
        self,
        *,
        base_url: str = DEFAULT_BASE_URL,
        model_id: str = DEFAULT_MODEL_ID,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.model_id = model_id
        self.timeout = timeout
        self.url = build_url(base_url=self.base_url, model_id=model_id)

    @classmethod
    def from_settings(cls, settings: Settings) -> "ImageGenerationClient":
        return cls(base_url=settings.base_url, model_id=settings.model_id, timeout=settings.timeout)

    def generate(
        self,
        image_request: GenerationRequest,
        credentials: Credentials,
        cancelled: Optional[threading.Event] = None,
    ) -> GenerationResult:
        """Generate images for one request.

        Args:
            image_request: Validated prompt and parameters.
            credentials: API key sent in the ``x-goog-api-key`` header.
            cancelled: Set by the caller once nobody waits for the result. A
                response that arrives after that is dropped unparsed.

        Returns:
            GenerationSuccess with the decoded images, or GenerationFailure
            describing why no image was produced.
        """
        body = build_request_body(image_request)
        logger.debug(
            "Request built for model %s (aspect_ratio=%s, sample_count=%d, prompt_chars=%d)",
            self.model_id,
            image_request.aspect_ratio,
            image_request.sample_count,
            len(image_request.prompt),
        )

        started = time.monotonic()
        try:
            status, raw = _http_post_json(self.url, body, credentials.api_key, self.timeout)
        except (OSError, http.client.HTTPException) as exc:
            result: GenerationResult = GenerationFailure(
                ErrorKind.TRANSIENT_UPSTREAM_ERROR,
                _describe_network_error(exc, self.timeout),
            )
        else:
            logger.debug("Image service answered HTTP %d after %.2fs", status, time.monotonic() - started)
            if cancelled is not None and cancelled.is_set():
                return GenerationFailure(
                    ErrorKind.TRANSIENT_UPSTREAM_ERROR,
                    "The call was cancelled before the image service answered.",
                    status,
                )
            if 200 <= status < 300:
                result = parse_predict_response(raw, status)
            else:
                result = _failure_from_status(status, raw)

        if isinstance(result, GenerationFailure):
            logger.warning("Image generation failed: %s: %s", result.kind.value, result.message)
        else:
            logger.info(
                "Generated %d image(s) in %.2fs", len(result.images), time.monotonic() - started
            )
        return result


__all__ = [
    "ASPECT_RATIOS",
    "DEFAULT_ASPECT_RATIO",
    "DEFAULT_MIME_TYPE",
    "DEFAULT_SAMPLE_COUNT",
    "MAX_SAMPLE_COUNT",
    "MIN_SAMPLE_COUNT",
    "ErrorKind",
    "GeneratedImage",
    "GenerationFailure",
    "GenerationRequest",
    "GenerationResult",
    "GenerationSuccess",
    "ImageGenerationClient",
    "ValidationError",
    "build_request_body",
    "build_url",
    "parse_predict_response",
]
