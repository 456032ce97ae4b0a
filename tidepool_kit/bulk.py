"""
Tidepool Kit Bulk Data

Partial-failure handling for bulk data calls:

- listing splits returned records into well-formed data and malformed
  entries instead of failing the call;
- ``DatumBatch`` derives selectors for created data and keeps them until a
  delete succeeds, so a failed delete can be retried with the same set.
"""

import logging
from typing import TYPE_CHECKING, Any, Callable, List, Optional, Sequence, Tuple, TypeVar

from .errors import ResponseMalformed, SessionMissing
from .types import Datum, MalformedEntry, Selector

if TYPE_CHECKING:
    from .client import TidepoolClient


logger = logging.getLogger("tidepool_kit")

T = TypeVar("T")


def partition(entries: Sequence[Any], decode: Callable[[Any], T]) -> Tuple[List[T], List[MalformedEntry]]:
    """Decode every entry; entries that fail are returned as ``MalformedEntry``."""
    decoded: List[T] = []
    malformed: List[MalformedEntry] = []
    for index, entry in enumerate(entries):
        try:
            decoded.append(decode(entry))
        except (KeyError, TypeError, ValueError) as e:
            malformed.append(MalformedEntry(index=index, raw=entry, reason=str(e) or type(e).__name__))
    return decoded, malformed


def partition_data(entries: Sequence[Any]) -> Tuple[List[Datum], List[MalformedEntry]]:
    return partition(entries, Datum.from_dict)


def require_well_formed(entries: Sequence[Any], decode: Callable[[Any], T]) -> List[T]:
    """Decode every entry, raising ``ResponseMalformed`` if any fail."""
    decoded, malformed = partition(entries, decode)
    if malformed:
        raise ResponseMalformed(malformed)
    return decoded


class DatumBatch:
    """
    Call-scoped create/delete coordinator for one data set.

    Not shared between concurrent callers. The retained selectors belong to
    the session user that created them; when that session is gone the
    selectors are abandoned.
    """

    def __init__(self, client: "TidepoolClient", data_set_id: str) -> None:
        session = client.session_store.current()
        if session is None:
            raise SessionMissing()
        self._client = client
        self._data_set_id = data_set_id
        self._user_id = session.user_id
        self._environment = session.environment
        self._selectors: List[Selector] = []

    @property
    def data_set_id(self) -> str:
        return self._data_set_id

    @property
    def selectors(self) -> List[Selector]:
        """Selectors awaiting deletion."""
        return list(self._selectors)

    async def create(self, data: Sequence[Datum]) -> List[Selector]:
        """
        Upload ``data`` and retain selectors for every item the service accepted.

        A rejected batch raises the service's error (``RequestMalformedJSON``
        carries one ``ErrorDetail`` per offending record) and derives no
        selectors.
        """
        self._check_session()
        await self._client.create_data(data, self._data_set_id)

        selectors = [
            selector
            for selector in (datum.selector(self._data_set_id) for datum in data)
            if selector is not None
        ]
        self._selectors.extend(selectors)
        logger.debug("[Tidepool] Created %d data, %d selectable", len(data), len(selectors))
        return selectors

    async def delete(self, selectors: Optional[Sequence[Selector]] = None) -> None:
        """
        Delete the retained selectors, or the given subset of them.

        Selectors are released only once the delete call succeeds.
        """
        self._check_session()
        targets = list(self._selectors if selectors is None else selectors)
        if not targets:
            return

        await self._client.delete_data(targets, self._data_set_id)

        deleted = set(targets)
        self._selectors = [selector for selector in self._selectors if selector not in deleted]

    def abandon(self) -> None:
        self._selectors = []

    def _check_session(self) -> None:
        session = self._client.session_store.current()
        if session is None or session.user_id != self._user_id or session.environment != self._environment:
            if self._selectors:
                logger.info("[Tidepool] Session changed, abandoning %d selectors", len(self._selectors))
            self.abandon()
            raise SessionMissing()
