"""Ingestion adapter: line source → parser → state store."""

from __future__ import annotations

import logging
from collections.abc import Callable

from pysbs.exceptions import SbsTransportError
from pysbs.ingestion.normalize import truncate_for_log
from pysbs.ingestion.parser import parse_line
from pysbs.ingestion.sources import LineSource, RawLine
from pysbs.models.aircraft import AircraftRecord
from pysbs.models.message import ParsedUpdate
from pysbs.state.store import AircraftStore

_logger = logging.getLogger(__name__)


class IngestionAdapter:
    """Drain one :class:`LineSource` into an :class:`AircraftStore`.

    Undecodable and unparseable lines are skipped. When the source ends or
    fails, ``on_closed`` is called exactly once (with ``None`` for a clean
    end of stream, otherwise the error that ended it) and the adapter stops;
    re-establishing the stream is the owner's job.
    """

    def __init__(
        self,
        source: LineSource,
        store: AircraftStore,
        *,
        on_opened: Callable[[LineSource], None] | None = None,
        on_update: Callable[[AircraftRecord, ParsedUpdate, str], None] | None = None,
        on_closed: Callable[[BaseException | None], None] | None = None,
    ) -> None:
        self._source = source
        self._store = store
        self._on_opened = on_opened
        self._on_update = on_update
        self._on_closed = on_closed
        self._closed = False
        self.lines_read = 0
        self.lines_rejected = 0
        self.updates_applied = 0

    @property
    def source(self) -> LineSource:
        return self._source

    @property
    def closed(self) -> bool:
        return self._closed

    async def run(self) -> BaseException | None:
        """Consume the source until it ends; return the closing error, if any."""
        error: BaseException | None = None
        try:
            await self._source.open()
            if self._on_opened is not None:
                self._on_opened(self._source)
            while True:
                raw = await self._source.next_line()
                if raw is None:
                    _logger.info("Stream %s ended", self._source.endpoint)
                    break
                self.process(raw)
        except SbsTransportError as exc:
            _logger.warning("Stream %s failed: %s", self._source.endpoint, exc)
            error = exc
        except OSError as exc:
            _logger.warning("Stream %s failed: %s", self._source.endpoint, exc)
            error = SbsTransportError(str(exc), endpoint=self._source.endpoint)
        except Exception as exc:
            _logger.exception("Ingestion from %s failed", self._source.endpoint)
            error = exc
        finally:
            try:
                await self._source.close()
            finally:
                self._report_closed(error)
        return error

    def process(self, raw: RawLine) -> AircraftRecord | None:
        """Decode, parse and merge one raw line."""
        self.lines_read += 1
        if isinstance(raw, bytes):
            try:
                line = raw.decode("ascii")
            except UnicodeDecodeError:
                self.lines_rejected += 1
                _logger.debug("Skipping undecodable line: %s", truncate_for_log(raw))
                return None
        else:
            line = raw

        update = parse_line(line)
        if update is None:
            self.lines_rejected += 1
            return None

        record = self._store.apply_update(update)
        self.updates_applied += 1
        if self._on_update is not None:
            self._on_update(record, update, line.strip())
        return record

    def _report_closed(self, error: BaseException | None) -> None:
        if self._closed:
            return
        self._closed = True
        if self._on_closed is not None:
            self._on_closed(error)
