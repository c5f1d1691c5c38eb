from abc import abstractmethod
from concurrent.futures import Future

from dnssd_stream.record import ServiceIdentity
from dnssd_stream.support.mixins import CommonEqualityMixin, StringerMixin

# error codes, as defined by dns_sd.h
ERROR_UNKNOWN = -65537
ERROR_BAD_PARAM = -65540
ERROR_NAME_CONFLICT = -65548
ERROR_NO_SUCH_RECORD = -65554
ERROR_SERVICE_NOT_RUNNING = -65563
ERROR_TIMEOUT = -65568


class EngineError(Exception):
    """ Indicates the discovery engine rejected an operation or has disconnected. """

    def __init__(self, message='', error_code=ERROR_UNKNOWN):
        super().__init__(message)
        self.error_code = error_code

    def __str__(self):
        return "%s (error %d)" % (super().__str__(), self.error_code)


class BrowseEvent(CommonEqualityMixin, StringerMixin):
    """ Notification from an engine browse about a service instance. """
    def __init__(self, identity: ServiceIdentity, if_index=0, flags=0):
        """
        :param identity The identity of the service instance
        :param if_index The network interface the notification arrived on
        :param flags The flags reported by the engine for the notification
        """
        self.identity = identity
        self.if_index = if_index
        self.flags = flags


class ServiceFoundEvent(BrowseEvent):
    """ Signifies that a service instance is advertised. """


class ServiceLostEvent(BrowseEvent):
    """ Signifies that a service instance is no longer advertised. """


class Resolution(CommonEqualityMixin, StringerMixin):
    """ The result of resolving a service instance. Either address may be None. """
    def __init__(self, hostname, port, ipv4=None, ipv6=None):
        self.hostname = hostname
        self.port = port
        self.ipv4 = ipv4
        self.ipv6 = ipv6


class EngineHandle:
    """ Represents a long running engine operation, such as a browse or TXT record query. """

    @abstractmethod
    def close(self):
        """
        Stops the operation. Once closed, no further callbacks are made.
        Closing an already closed handle does nothing.
        """
        raise NotImplementedError


class DiscoveryEngine:
    """
    The contract for an mDNS/DNS-SD engine.

    Callbacks are made on threads owned by the engine, and so should not block. They may be made before the
    method that registered them has returned.
    """

    @abstractmethod
    def browse(self, reg_type, domain, on_event, on_error) -> EngineHandle:
        """
        Starts browsing for services.
        :param reg_type: the registration type, such as '_http._tcp'
        :param domain: the domain to browse, such as 'local.'
        :param on_event: called with a ServiceFoundEvent or ServiceLostEvent as service instances come and go
        :param on_error: called with an EngineError when browsing fails. No further events are sent.
        :raises EngineError: if the browse cannot be started
        """
        raise NotImplementedError

    @abstractmethod
    def resolve(self, identity: ServiceIdentity, if_index) -> Future:
        """
        Resolves the host, port and addresses of a service instance.
        :return: a future for the Resolution. The future fails with EngineError if the service cannot be resolved.
        """
        raise NotImplementedError

    @abstractmethod
    def query_txt_records(self, identity: ServiceIdentity, if_index, on_change, on_error) -> EngineHandle:
        """
        Monitors the TXT records of a service instance.
        :param on_change: called with a dict of str to str each time the TXT records change, including the
            first time they are known
        :param on_error: called with an EngineError if the query fails. No further changes are sent.
        :raises EngineError: if the query cannot be started
        """
        raise NotImplementedError

    @abstractmethod
    def register(self, identity: ServiceIdentity, port, txt_records, on_registered, on_error) -> EngineHandle:
        """
        Advertises a service. Closing the handle removes the advertisement.
        :param on_registered: called with the ServiceIdentity as registered, which may differ from the
            identity requested when the engine renames the service to avoid a conflict
        :param on_error: called with an EngineError if the service cannot be registered
        :raises EngineError: if the registration cannot be started
        """
        raise NotImplementedError

    def close(self):
        """ releases the resources held by the engine """
        pass
