"""
Client for the external vision (OCR) service.

The service works asynchronously: the image is submitted once, then the
returned operation URL is polled a fixed number of times with a fixed delay.
Exhausting the attempts is a permanent failure; nothing retries forever.
"""

from __future__ import annotations

from datetime import date, time
from decimal import Decimal
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

import pydantic
import requests
from pydantic import BaseModel, Field
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from fuelsync.config import get_settings
from fuelsync.domain.errors import OcrServiceError
from fuelsync.utils.logging import get_logger

log = get_logger(__name__)


class OcrNozzleReading(BaseModel):
    nozzle_number: int
    cumulative_volume: Decimal

    model_config = {"frozen": True}


class OcrExtraction(BaseModel):
    """Structured fields the vision service extracted from a meter photo."""

    pump_sno: Optional[str] = None
    reading_date: Optional[date] = None
    reading_time: Optional[time] = None
    nozzles: List[OcrNozzleReading] = Field(default_factory=list)

    model_config = {"frozen": True}


@runtime_checkable
class OcrService(Protocol):
    def extract(self, content: bytes, content_type: str) -> OcrExtraction:
        ...


class _OperationPending(Exception):
    """The vision operation has not finished yet."""


class VisionApiClient:
    """
    `OcrService` backed by an HTTP vision API.

    Parameters default to the OCR_* settings.
    """

    def __init__(
        self,
        endpoint: Optional[str] = None,
        api_key: Optional[str] = None,
        poll_attempts: Optional[int] = None,
        poll_interval_seconds: Optional[float] = None,
        request_timeout_seconds: Optional[float] = None,
        http: Optional[requests.Session] = None,
    ) -> None:
        settings = get_settings()
        self.endpoint = endpoint or settings.ocr_endpoint
        self.api_key = settings.ocr_api_key if api_key is None else api_key
        self.poll_attempts = poll_attempts or settings.ocr_poll_attempts
        self.poll_interval_seconds = (
            settings.ocr_poll_interval_seconds
            if poll_interval_seconds is None
            else poll_interval_seconds
        )
        self.request_timeout_seconds = (
            request_timeout_seconds or settings.ocr_request_timeout_seconds
        )
        self._http = http or requests.Session()

    def _headers(self, content_type: Optional[str] = None) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Ocp-Apim-Subscription-Key"] = self.api_key
        if content_type:
            headers["Content-Type"] = content_type
        return headers

    def extract(self, content: bytes, content_type: str) -> OcrExtraction:
        """
        Submit an image and wait for its extraction.

        Raises
        ------
        OcrServiceError
            Transport failure, a failed operation, polling exhausted, or a
            result that does not match the expected shape.
        """
        body = self._submit(content, content_type)
        if str(body.get("status", "")).lower() == "succeeded":
            result = self._require_result(body)
        else:
            operation_url = body.get("operation_url")
            if not operation_url:
                raise OcrServiceError("Vision service did not return an operation URL")
            result = self._poll(operation_url)
        return self._parse(result)

    def _submit(self, content: bytes, content_type: str) -> Dict[str, Any]:
        try:
            response = self._http.post(
                self.endpoint,
                data=content,
                headers=self._headers(content_type),
                timeout=self.request_timeout_seconds,
            )
            response.raise_for_status()
        except requests.RequestException as exc:
            raise OcrServiceError(f"Vision service submit failed: {exc}") from exc

        body: Dict[str, Any] = {}
        if response.content:
            try:
                body = response.json()
            except ValueError:
                body = {}
        if not isinstance(body, dict):
            raise OcrServiceError("Vision service returned a non-object JSON body")
        operation_url = response.headers.get("Operation-Location")
        if operation_url:
            body.setdefault("operation_url", operation_url)
        log.info(
            "[OCR SUBMITTED]",
            extra={"bytes": len(content), "content_type": content_type, "status": response.status_code},
        )
        return body

    def _check(self, operation_url: str) -> Dict[str, Any]:
        try:
            response = self._http.get(
                operation_url, headers=self._headers(), timeout=self.request_timeout_seconds
            )
            response.raise_for_status()
            body = response.json()
        except requests.RequestException as exc:
            raise OcrServiceError(f"Vision service poll failed: {exc}") from exc
        except ValueError as exc:
            raise OcrServiceError("Vision service returned invalid JSON") from exc
        if not isinstance(body, dict):
            raise OcrServiceError("Vision service returned a non-object JSON body")

        status = str(body.get("status", "")).lower()
        if status == "succeeded":
            return self._require_result(body)
        if status == "failed":
            raise OcrServiceError(f"Vision operation failed: {body.get('error') or 'unknown error'}")
        raise _OperationPending(status or "unknown")

    def _poll(self, operation_url: str) -> Dict[str, Any]:
        retryer = Retrying(
            stop=stop_after_attempt(self.poll_attempts),
            wait=wait_fixed(self.poll_interval_seconds),
            retry=retry_if_exception_type(_OperationPending),
            reraise=True,
        )
        try:
            return retryer(self._check, operation_url)
        except _OperationPending as exc:
            raise OcrServiceError(
                f"Vision operation still '{exc}' after {self.poll_attempts} attempts"
            ) from exc

    @staticmethod
    def _require_result(body: Dict[str, Any]) -> Dict[str, Any]:
        result = body.get("result")
        if not isinstance(result, dict):
            raise OcrServiceError("Vision operation succeeded without a result")
        return result

    @staticmethod
    def _parse(result: Dict[str, Any]) -> OcrExtraction:
        try:
            return OcrExtraction.model_validate(result)
        except pydantic.ValidationError as exc:
            raise OcrServiceError(f"Unexpected vision result: {exc.error_count()} invalid fields") from exc


__all__ = ["OcrExtraction", "OcrNozzleReading", "OcrService", "VisionApiClient"]
