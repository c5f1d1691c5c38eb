import logging

from dnssd_stream.engine.base import EngineError, ServiceFoundEvent, ServiceLostEvent
from dnssd_stream.record import LOST, ServiceRecord
from dnssd_stream.stream import ServiceStream, Stage

logger = logging.getLogger(__name__)


class BrowseStream(ServiceStream):
    """
    The services of one registration type in one domain, as reported by the engine's browse.

    Each subscription starts its own engine browse, which is closed when the subscription ends.
    A found service is emitted as a record with just the identity, interface and flags. A lost service is
    emitted as a record with the LOST flag set.

    :param engine: the DiscoveryEngine to browse with
    :param reg_type: the registration type, such as '_http._tcp'
    :param domain: the domain to browse, typically 'local.'
    """

    def __init__(self, engine, reg_type, domain='local.'):
        super().__init__(engine)
        self.reg_type = reg_type
        self.domain = domain

    def _open(self, pipeline, downstream):
        stage = BrowseStage(pipeline, downstream, self.engine, self.reg_type, self.domain)
        stage.open()
        return stage


class BrowseStage(Stage):
    """
    Turns engine browse events into records.
    Repeated found events with the same interface and flags are ignored, as are lost events for services
    that are not currently found. Any engine error ends the subscription.
    """

    def __init__(self, pipeline, downstream, engine, reg_type, domain):
        super().__init__(pipeline, downstream)
        self.engine = engine
        self.reg_type = reg_type
        self.domain = domain
        self.handle = None
        self._found = {}    # identity -> (if_index, flags) of the last found event

    def open(self):
        try:
            self.handle = self.engine.browse(self.reg_type, self.domain, self._post_event, self._post_error)
            logger.info("browsing for %s in %s", self.reg_type, self.domain)
        except EngineError as e:
            self._post_error(e)

    def _post_event(self, event):
        """ called by the engine, possibly on another thread """
        self.pipeline.post(self.browse_event, event)

    def _post_error(self, error):
        """ called by the engine, possibly on another thread """
        self.pipeline.post(self.browse_failed, error)

    def browse_event(self, event):
        if isinstance(event, ServiceFoundEvent):
            self._service_found(event)
        elif isinstance(event, ServiceLostEvent):
            self._service_lost(event)
        else:
            logger.warning("unknown browse event %s", event)

    def _service_found(self, event):
        identity = event.identity
        state = (event.if_index, event.flags & ~LOST)
        if self._found.get(identity) == state:
            logger.debug("ignoring repeated found event for %s", identity)
            return
        self._found[identity] = state
        logger.debug("service found: %s", identity)
        self.downstream.on_record(ServiceRecord(identity, flags=state[1], if_index=event.if_index))

    def _service_lost(self, event):
        identity = event.identity
        if self._found.pop(identity, None) is None:
            logger.debug("ignoring lost event for %s, which was not found", identity)
            return
        logger.debug("service lost: %s", identity)
        self.downstream.on_record(ServiceRecord(identity, flags=event.flags | LOST, if_index=event.if_index))

    def browse_failed(self, error):
        if not isinstance(error, EngineError):
            cause = error
            error = EngineError("browse failed: %s" % cause)
            error.__cause__ = cause
        logger.error("browse for %s in %s failed: %s", self.reg_type, self.domain, error)
        self.pipeline.fail(error)

    def close(self):
        handle = self.handle
        self.handle = None
        self._found.clear()
        if handle is not None:
            handle.close()
            logger.info("stopped browsing for %s in %s", self.reg_type, self.domain)
