import logging

from dnssd_stream.engine.base import EngineError
from dnssd_stream.record import ServiceIdentity, ServiceRecord
from dnssd_stream.stream import ServiceStream, Stage

logger = logging.getLogger(__name__)


class RegisterStream(ServiceStream):
    """
    Advertises a service for as long as the stream is subscribed.

    A record is emitted each time the engine confirms the registration. The identity of the record is the
    identity the service was registered with, which may have been renamed by the engine to resolve a name
    conflict. A registration error ends the subscription.

    :param engine: the DiscoveryEngine to register with
    :param identity: the ServiceIdentity to advertise
    :param port: the port the service listens on
    :param txt_records: a mapping of str to str to publish as the service's TXT records
    """

    def __init__(self, engine, identity: ServiceIdentity, port, txt_records=None):
        super().__init__(engine)
        self.identity = identity
        self.port = port
        self.txt_records = dict(txt_records or {})

    def _open(self, pipeline, downstream):
        stage = RegisterStage(pipeline, downstream, self)
        stage.open()
        return stage


class RegisterStage(Stage):

    def __init__(self, pipeline, downstream, stream: RegisterStream):
        super().__init__(pipeline, downstream)
        self.stream = stream
        self.handle = None

    def open(self):
        stream = self.stream
        try:
            self.handle = stream.engine.register(
                stream.identity, stream.port, stream.txt_records,
                lambda identity: self.pipeline.post(self.registered, identity),
                lambda error: self.pipeline.post(self.registration_failed, error))
        except EngineError as e:
            self.pipeline.post(self.registration_failed, e)

    def registered(self, identity):
        logger.info("registered %s on port %s", identity, self.stream.port)
        self.downstream.on_record(ServiceRecord(identity, port=self.stream.port,
                                                txt_records=self.stream.txt_records))

    def registration_failed(self, error):
        logger.error("registration of %s failed: %s", self.stream.identity, error)
        self.pipeline.fail(error)

    def close(self):
        handle = self.handle
        self.handle = None
        if handle is not None:
            handle.close()
            logger.info("unregistered %s", self.stream.identity)
