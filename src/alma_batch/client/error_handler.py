"""Classification of failed Alma API responses.

Alma reports failures either as XML::

    <web_service_result>
      <errorsExist>true</errorsExist>
      <errorList>
        <error>
          <errorCode>401861</errorCode>
          <errorMessage>User with identifier X was not found.</errorMessage>
          <trackingId>E01-...</trackingId>
        </error>
      </errorList>
    </web_service_result>

or as the equivalent JSON document. Both shapes are turned into an `APIError`
carrying one `ErrorDetail` per reported error. Anything that cannot be read
becomes an `ApiProtocolError` so an HTTP failure is never lost.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any
from xml.etree.ElementTree import ParseError, XMLPullParser

from alma_batch.client.decoder import local_name
from alma_batch.constants import (
    ERROR_CODE_ELEMENT,
    ERROR_ELEMENT,
    ERROR_LIST_KEY,
    ERROR_MESSAGE_ELEMENT,
    JSON_MEDIA_TYPE,
    TRACKING_ID_ELEMENT,
    XML_MEDIA_TYPE,
)
from alma_batch.core.exceptions import AlmaBatchError, APIError, ApiProtocolError
from alma_batch.core.types import ErrorDetail

if TYPE_CHECKING:
    import httpx

log = logging.getLogger(__name__)

_XML_TYPES = frozenset({XML_MEDIA_TYPE, "text/xml"})
_FIELD_ELEMENTS = {
    ERROR_CODE_ELEMENT: "error_code",
    ERROR_MESSAGE_ELEMENT: "error_message",
    TRACKING_ID_ELEMENT: "tracking_id",
}
_EXCERPT_LENGTH = 200


class _ErrorBodyUnreadable(Exception):
    """Internal signal that a declared error body could not be parsed."""


def media_type(content_type: str | None) -> str | None:
    """Return the media type portion of a Content-Type header, lower-cased."""
    if content_type is None:
        return None
    value = content_type.split(";", 1)[0].strip().lower()
    return value or None


def is_error_status(status_code: int) -> bool:
    """Whether a status code is a client or server error."""
    return 400 <= status_code < 600


class ErrorClassifier:
    """Turns failed HTTP responses into structured exceptions."""

    def classify_response(self, response: httpx.Response) -> AlmaBatchError:
        """Classify a fully read `httpx.Response`."""
        return self.classify(
            response.status_code,
            response.headers.get("content-type"),
            response.content,
        )

    def classify(
        self, status_code: int, content_type: str | None, body: bytes | str
    ) -> AlmaBatchError:
        """Return the exception that describes a failed response.

        Args:
            status_code: HTTP status of the failed response.
            content_type: Raw Content-Type header, or None when absent.
            body: Response body.

        Returns:
            `APIError` with at least one detail when the body could be
            classified, otherwise `ApiProtocolError`.
        """
        declared = media_type(content_type)
        if declared is None:
            return self._protocol_error(
                f"Alma API error {status_code} with missing content type",
                status_code,
                content_type,
                body,
            )

        try:
            if declared in _XML_TYPES:
                details = self._parse_xml(status_code, body)
            elif declared == JSON_MEDIA_TYPE:
                details = self._parse_json(status_code, body)
            else:
                return self._protocol_error(
                    f"Alma API error {status_code} with unexpected content type "
                    f"{content_type}",
                    status_code,
                    content_type,
                    body,
                )
        except _ErrorBodyUnreadable as e:
            return self._protocol_error(
                f"Alma API error {status_code}, couldn't parse error message from "
                f"{declared} body: {e}",
                status_code,
                content_type,
                body,
            )

        if not details:
            return self._protocol_error(
                f"Alma API error {status_code}, {declared} body contained no errors",
                status_code,
                content_type,
                body,
            )
        return APIError(status_code, tuple(details))

    # --- Internal helpers ---

    def _parse_xml(self, status_code: int, body: bytes | str) -> list[ErrorDetail]:
        parser = XMLPullParser(events=("start", "end"))
        details: list[dict[str, str]] = []

        def drain() -> None:
            for event, elem in parser.read_events():
                name = local_name(elem.tag)
                if event == "start":
                    if name == ERROR_ELEMENT:
                        details.append(
                            {"error_code": "", "error_message": "", "tracking_id": ""}
                        )
                    continue
                field = _FIELD_ELEMENTS.get(name)
                # Fields outside an <error> group have nothing to attach to
                if field is not None and details:
                    details[-1][field] = (elem.text or "").strip()

        try:
            parser.feed(body)
            drain()
            parser.close()
            drain()
        except ParseError as e:
            if not details:
                raise _ErrorBodyUnreadable(str(e)) from e
            # A truncated body still yields the groups read before the break
            log.warning(
                "Error body truncated after %d error(s): %s", len(details), e
            )

        return [ErrorDetail(status_code=status_code, **d) for d in details]

    def _parse_json(self, status_code: int, body: bytes | str) -> list[ErrorDetail]:
        try:
            document = json.loads(body)
        except (ValueError, UnicodeDecodeError) as e:
            raise _ErrorBodyUnreadable(str(e)) from e

        if not isinstance(document, dict):
            raise _ErrorBodyUnreadable("top-level JSON value is not an object")
        error_list = document.get(ERROR_LIST_KEY)
        if not isinstance(error_list, dict):
            raise _ErrorBodyUnreadable(f"missing {ERROR_LIST_KEY!r} object")

        return [
            ErrorDetail(
                status_code=status_code,
                error_code=_as_text(error.get(ERROR_CODE_ELEMENT)),
                error_message=_as_text(error.get(ERROR_MESSAGE_ELEMENT)),
                tracking_id=_as_text(error.get(TRACKING_ID_ELEMENT)),
            )
            for error in _iter_error_objects(error_list)
        ]

    @staticmethod
    def _protocol_error(
        message: str,
        status_code: int,
        content_type: str | None,
        body: bytes | str,
    ) -> ApiProtocolError:
        if isinstance(body, bytes):
            body = body.decode("utf-8", errors="replace")
        excerpt = body[:_EXCERPT_LENGTH]
        log.debug("Unclassifiable error body (status %s): %r", status_code, excerpt)
        return ApiProtocolError(
            message,
            status_code=status_code,
            content_type=content_type,
            body_excerpt=excerpt,
        )


def _iter_error_objects(error_list: dict[str, Any]) -> list[dict[str, Any]]:
    """Flatten the error objects held by an ``errorList`` value.

    Alma emits ``{"error": {...}}`` for one error and ``{"error": [...]}`` for
    several; every value of the object is inspected the same way.
    """
    errors: list[dict[str, Any]] = []
    for value in error_list.values():
        if isinstance(value, dict):
            errors.append(value)
        elif isinstance(value, list):
            errors.extend(v for v in value if isinstance(v, dict))
    return errors


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)
