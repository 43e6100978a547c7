"""Incremental decoding of paginated user listing responses.

The listing endpoint returns XML shaped like::

    <users total_record_count="1234">
      <user><primary_id>abc</primary_id>...</user>
      ...
    </users>

Bodies are fed to the decoder chunk by chunk as they stream in, and elements
are discarded as soon as they have been read so a page never needs a full tree.
"""

from __future__ import annotations

import logging
from xml.etree.ElementTree import ParseError, XMLPullParser

from alma_batch.constants import (
    PRIMARY_ID_ELEMENT,
    TOTAL_RECORD_COUNT_ATTR,
    USERS_ELEMENT,
)
from alma_batch.core.exceptions import DecodeError
from alma_batch.core.types import UserList

log = logging.getLogger(__name__)


def local_name(tag: str) -> str:
    """Strip an ElementTree ``{namespace}`` prefix from a tag."""
    return tag.rpartition("}")[2]


class UserListDecoder:
    """Streaming decoder for `<users>` listing bodies.

    Collects every `<primary_id>` text in document order and the
    `total_record_count` attribute of the outer `<users>` element.
    """

    def __init__(
        self,
        *,
        require_total: bool = True,
        container: str = USERS_ELEMENT,
        id_element: str = PRIMARY_ID_ELEMENT,
        total_attribute: str = TOTAL_RECORD_COUNT_ATTR,
    ) -> None:
        """Initialize the decoder.

        Args:
            require_total: Fail on close when the total count attribute is
                missing or not an integer.
            container: Local name of the outer listing element.
            id_element: Local name of the identifier-bearing element.
            total_attribute: Attribute of the container holding the total count.
        """
        self.require_total = require_total
        self._container = container
        self._id_element = id_element
        self._total_attribute = total_attribute
        self._parser = XMLPullParser(events=("start", "end"))
        self._ids: list[str] = []
        self._total: int | None = None
        self._raw_total: str | None = None
        self._seen_container = False
        self._closed = False

    def feed(self, chunk: bytes | str) -> None:
        """Feed the next chunk of the response body."""
        if self._closed:
            raise DecodeError("decoder already closed")
        try:
            self._parser.feed(chunk)
        except ParseError as e:
            raise DecodeError(f"Malformed user listing XML: {e}") from e
        self._drain()

    def close(self) -> UserList:
        """Finish parsing and return the decoded identifiers and total."""
        if self._closed:
            raise DecodeError("decoder already closed")
        self._closed = True
        try:
            self._parser.close()
        except ParseError as e:
            raise DecodeError(f"Malformed user listing XML: {e}") from e
        self._drain()

        if not self._seen_container:
            raise DecodeError(
                f"User listing has no <{self._container}> element"
            )
        if self.require_total and self._total is None:
            if self._raw_total is None:
                raise DecodeError(
                    f"Failed to get total record count: <{self._container}> has no "
                    f"{self._total_attribute} attribute"
                )
            raise DecodeError(
                f"Failed to get total record count: {self._raw_total!r} is not an integer"
            )
        return UserList(ids=tuple(self._ids), total=self._total)

    def _drain(self) -> None:
        try:
            events = list(self._parser.read_events())
        except ParseError as e:
            raise DecodeError(f"Malformed user listing XML: {e}") from e

        for event, elem in events:
            name = local_name(elem.tag)
            if event == "start":
                if name == self._container and not self._seen_container:
                    self._seen_container = True
                    self._read_total(elem.attrib.get(self._total_attribute))
            elif name == self._id_element:
                self._ids.append((elem.text or "").strip())
                elem.clear()
            elif name != self._container:
                elem.clear()

    def _read_total(self, raw: str | None) -> None:
        self._raw_total = raw
        if raw is None:
            return
        value = raw.strip()
        # int() would also accept signs and underscores
        if value.isascii() and value.isdigit():
            self._total = int(value)
        else:
            log.debug("Unparseable %s attribute: %r", self._total_attribute, raw)
            self._total = None


def decode_user_list(body: bytes | str, *, require_total: bool = True) -> UserList:
    """Decode a complete listing body in one call."""
    decoder = UserListDecoder(require_total=require_total)
    decoder.feed(body)
    return decoder.close()
