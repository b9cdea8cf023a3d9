"""Waste classifier backed by a Gradio ``/call/predict`` endpoint via httpx."""

from __future__ import annotations

import asyncio
import json
import logging
import math
from typing import Any, Callable

import httpx

from greensnap.classifier.base import decode_image
from greensnap.config import settings
from greensnap.errors import (
    ClassifierTimeout,
    InvalidUpstreamResponse,
    ServiceUnavailable,
    UpstreamUnauthorized,
)
from greensnap.models.classification import ClassificationPolicy, ClassificationResult

logger = logging.getLogger(__name__)

# 1x1 transparent PNG used by the health probe
PROBE_IMAGE = (
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mP8z8BQDwAEhQGAhKmMIQAAAABJRU5ErkJggg=="
)


class TransientUpstreamError(Exception):
    """Upstream failure worth retrying (connection refused, 5xx, cold start)."""


Prediction = tuple[str, float]


# --- Response shapes, tried in order ---


def _coerce_confidence(value: Any) -> float | None:
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(confidence) or not 0.0 <= confidence <= 1.0:
        return None
    return confidence


def _flat_shape(payload: Any) -> Prediction | None:
    """``{"label": "Waste", "confidence": 0.9}``"""
    if isinstance(payload, dict) and "label" in payload and "confidence" in payload:
        confidence = _coerce_confidence(payload["confidence"])
        if payload["label"] is not None and confidence is not None:
            return str(payload["label"]), confidence
    return None


def _label_component_shape(payload: Any) -> Prediction | None:
    """Gradio Label output: ``{"label": "Waste", "confidences": [{"label", "confidence"}]}``"""
    if not isinstance(payload, dict) or not isinstance(payload.get("confidences"), list):
        return None
    scored = [p for p in (_flat_shape(c) for c in payload["confidences"]) if p]
    if not scored:
        return None
    top = payload.get("label")
    for label, confidence in scored:
        if top is not None and label == str(top):
            return label, confidence
    return max(scored, key=lambda p: p[1])


def _pair_shape(payload: Any) -> Prediction | None:
    """``["Waste", 0.9]``"""
    if isinstance(payload, (list, tuple)) and len(payload) >= 2 and isinstance(payload[0], str):
        confidence = _coerce_confidence(payload[1])
        if confidence is not None:
            return payload[0], confidence
    return None


SHAPES: tuple[Callable[[Any], Prediction | None], ...] = (
    _flat_shape,
    _label_component_shape,
    _pair_shape,
)


def extract_prediction(payload: Any, depth: int = 0) -> Prediction | None:
    """Find a ``(label, confidence)`` pair in a decoded upstream payload.

    Unwraps ``{"data": [...]}`` envelopes and single-element arrays
    (``{"data": [["Waste", 0.9]]}``) before matching the known shapes.
    """
    if depth > 4:
        return None
    for shape in SHAPES:
        prediction = shape(payload)
        if prediction:
            return prediction
    if isinstance(payload, dict) and "data" in payload:
        return extract_prediction(payload["data"], depth + 1)
    if isinstance(payload, list) and payload:
        return extract_prediction(payload[0], depth + 1)
    return None


def find_model_version(payload: Any) -> str | None:
    if isinstance(payload, dict):
        version = payload.get("model_version") or payload.get("modelVersion")
        if version:
            return str(version)
        return find_model_version(payload.get("data"))
    if isinstance(payload, list):
        for item in payload:
            version = find_model_version(item)
            if version:
                return version
    return None


def decode_body(text: str) -> Any:
    """Decode a JSON body or a Gradio server-sent event stream.

    For SSE, the payload of the ``complete`` event wins; an ``error`` event
    is treated as transient (Gradio emits it while the Space is waking up).
    """
    text = text.strip()
    if not text.startswith(("event:", "data:")):
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise InvalidUpstreamResponse() from exc

    event = None
    last_data = None
    for line in text.splitlines():
        line = line.strip()
        if line.startswith("event:"):
            event = line[len("event:"):].strip()
        elif line.startswith("data:"):
            data = line[len("data:"):].strip()
            if event == "error":
                raise TransientUpstreamError(f"Gradio error event: {data or 'unknown'}")
            last_data = data
            if event == "complete":
                break

    if not last_data or last_data == "null":
        raise InvalidUpstreamResponse()
    try:
        return json.loads(last_data)
    except json.JSONDecodeError as exc:
        raise InvalidUpstreamResponse() from exc


class GradioClassifier:
    """Waste / non-waste classifier hosted as a Gradio app.

    The predict call is two-step: POST the image to get an event id, then GET
    the result for that event. Transient failures are retried with exponential
    backoff up to ``max_attempts`` calls in total.
    """

    name: str = "gradio"

    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        timeout: float | None = None,
        max_attempts: int | None = None,
        backoff_base: float | None = None,
        model_version: str | None = None,
        policy: ClassificationPolicy | None = None,
    ) -> None:
        self.base_url = (base_url or settings.classifier_url).rstrip("/")
        self.token = token if token is not None else settings.classifier_token
        self.timeout = timeout or settings.classifier_timeout
        self.max_attempts = max(1, max_attempts or settings.classifier_max_attempts)
        self.backoff_base = backoff_base if backoff_base is not None else settings.classifier_backoff_base
        self.model_version = model_version or settings.model_version
        self.policy = policy or ClassificationPolicy(
            waste_accept=settings.waste_accept_threshold,
            non_waste_reject=settings.non_waste_reject_threshold,
            high_confidence=settings.high_confidence_threshold,
        )

    async def classify(self, image: str | bytes) -> ClassificationResult:
        """Classify an image, retrying transient upstream failures."""
        encoded, _ = decode_image(image)

        delay = self.backoff_base
        last_error: Exception | None = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                payload = await self._predict(encoded)
                break
            except TransientUpstreamError as exc:
                last_error = exc
                logger.warning(
                    "Classifier attempt %d/%d failed: %s", attempt, self.max_attempts, exc
                )
                if attempt < self.max_attempts:
                    await asyncio.sleep(delay)
                    delay *= 2
        else:
            logger.error("Classifier unavailable after %d attempts", self.max_attempts)
            raise ServiceUnavailable() from last_error

        prediction = extract_prediction(payload)
        if prediction is None:
            logger.error("Unrecognised classifier response: %.200s", payload)
            raise InvalidUpstreamResponse()

        label, confidence = prediction
        result = ClassificationResult.from_prediction(
            label,
            confidence,
            find_model_version(payload) or self.model_version,
            self.policy,
        )
        logger.info(
            "Classified image as %s (%.3f, %s)", result.label, result.confidence,
            result.verification.value,
        )
        return result

    async def health(self) -> dict:
        """Probe the upstream with a tiny image and check the model version."""
        try:
            result = await self.classify(PROBE_IMAGE)
        except Exception as exc:
            logger.warning("Classifier health probe failed: %s", exc)
            return {"status": "degraded", "working": False, "error": str(exc)}

        if result.model_version != self.model_version:
            return {
                "status": "degraded",
                "working": True,
                "error": "Wrong model version detected",
                "modelVersion": result.model_version,
            }
        return {"status": "operational", "working": True, "modelVersion": result.model_version}

    async def _predict(self, encoded: str) -> Any:
        """Run one POST + GET round trip and return the decoded payload."""
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    self.base_url,
                    headers=headers,
                    json={"data": [f"data:image/jpeg;base64,{encoded}"]},
                )
                self._check_status(response)
                event_id = self._event_id(response)

                response = await client.get(f"{self.base_url}/{event_id}", headers=headers)
                self._check_status(response)
        except httpx.TimeoutException as exc:
            raise ClassifierTimeout() from exc
        except httpx.TransportError as exc:
            raise TransientUpstreamError(f"Connection failed: {exc}") from exc

        return decode_body(response.text)

    @staticmethod
    def _check_status(response: httpx.Response) -> None:
        status = response.status_code
        if status in (401, 403):
            raise UpstreamUnauthorized()
        if status >= 500:
            if "loading" in response.text.lower():
                raise TransientUpstreamError("Model is loading")
            raise TransientUpstreamError(f"Upstream returned {status}")
        if status >= 400:
            raise InvalidUpstreamResponse(f"Classifier rejected the request ({status})")

    @staticmethod
    def _event_id(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            body = response.text
        if isinstance(body, dict):
            body = body.get("event_id")
        event_id = str(body or "").strip().strip('"')
        if not event_id:
            raise InvalidUpstreamResponse("No event id returned by classifier")
        return event_id
