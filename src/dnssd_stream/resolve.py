import logging

from dnssd_stream.engine.base import ERROR_SERVICE_NOT_RUNNING, EngineError
from dnssd_stream.stage import EnrichmentStage, ResolutionFailure, Task
from dnssd_stream.stream import TransformStream

logger = logging.getLogger(__name__)


class ResolveStream(TransformStream):
    """
    Resolves the services in the upstream stream. Records are passed on as they arrive, and are followed
    by a record with the hostname, port and addresses once the service is resolved.
    Services that cannot be resolved are reported as a ResolutionFailure.
    """

    def _create_stage(self, pipeline, downstream):
        return ResolveStage(pipeline, downstream, self.engine)


class ResolveStage(EnrichmentStage):
    """
    Starts one engine resolve for each service found, unless a resolve is already in progress for the service,
    in which case the record is ignored.
    """
    failure_type = ResolutionFailure

    def _available(self, record):
        identity = record.identity
        if identity in self.tasks:
            logger.debug("already resolving %s", identity)
            return
        latest = self.latest(identity)
        if latest is not None:
            # same lineage, seen on another interface - keep what is already known
            record = latest.builder().if_index(record.if_index).flags(record.flags).build()
        self._emit(record)
        self._start(record)

    def _start(self, record):
        identity = record.identity
        try:
            future = self.engine.resolve(identity, record.if_index)
        except EngineError as e:
            self._fail(identity, e)
            return
        task = Task(identity, future.cancel)
        self.tasks.add(task)
        logger.debug("resolving %s on interface %d", identity, record.if_index)
        future.add_done_callback(lambda f: self.pipeline.post(self.resolved, task, f))

    def resolved(self, task, future):
        """ handles the completion of an engine resolve """
        if not self.tasks.finish(task):
            self._discard(task, "resolution")
            return
        error = future.exception() if not future.cancelled() else \
            EngineError("resolve was cancelled by the engine", ERROR_SERVICE_NOT_RUNNING)
        if error is not None:
            self._fail(task.identity, error)
            return
        resolution = future.result()
        record = self.latest(task.identity).builder()\
            .hostname(resolution.hostname)\
            .port(resolution.port)\
            .ipv4(resolution.ipv4)\
            .ipv6(resolution.ipv6)\
            .build()
        logger.debug("resolved %s to %s:%s", task.identity, resolution.hostname, resolution.port)
        self._emit(record)
