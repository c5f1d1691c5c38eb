import logging

from dnssd_stream.engine.base import EngineError
from dnssd_stream.stage import EnrichmentStage, QueryFailure, Task
from dnssd_stream.stream import TransformStream

logger = logging.getLogger(__name__)


class QueryStream(TransformStream):
    """
    Monitors the TXT records of each resolved service in the upstream stream. Records are passed on as they
    arrive, and a new record is emitted each time the TXT records of the service change.
    Services whose TXT records cannot be queried are reported as a QueryFailure.
    """

    def _create_stage(self, pipeline, downstream):
        return QueryStage(pipeline, downstream, self.engine)


class QueryStage(EnrichmentStage):
    """
    Opens one engine TXT record query for each resolved service. The query stays open until the service is
    lost or the subscription ends.
    """
    failure_type = QueryFailure

    def _available(self, record):
        latest = self.latest(record.identity)
        if latest is not None and latest.txt_records and not record.txt_records:
            record = record.builder().txt_records(latest.txt_records).build()
        self._emit(record)
        if record.is_resolved and record.identity not in self.tasks:
            self._start(record)

    def _start(self, record):
        identity = record.identity
        task = Task(identity)
        try:
            handle = self.engine.query_txt_records(
                identity, record.if_index,
                lambda txt_records: self.pipeline.post(self.txt_records_changed, task, txt_records),
                lambda error: self.pipeline.post(self.query_failed, task, error))
        except EngineError as e:
            self._fail(identity, e)
            return
        task.on_cancel = handle.close
        self.tasks.add(task)
        logger.debug("querying TXT records for %s", identity)

    def txt_records_changed(self, task, txt_records):
        if not self.tasks.is_current(task):
            self._discard(task, "TXT records")
            return
        latest = self.latest(task.identity)
        if dict(latest.txt_records) == dict(txt_records):
            logger.debug("TXT records for %s are unchanged", task.identity)
            return
        self._emit(latest.builder().txt_records(txt_records).build())

    def query_failed(self, task, error):
        if not self.tasks.finish(task):
            self._discard(task, "query error")
            return
        task.cancel()
        self._fail(task.identity, error)
