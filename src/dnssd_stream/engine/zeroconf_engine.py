"""
A DiscoveryEngine built on python-zeroconf.

Browse events come from zeroconf's ServiceBrowser thread. Resolves are run on a thread pool, since
get_service_info() blocks until the service answers or the timeout expires. TXT record queries are a
ServiceBrowser for the service type, filtered to the one instance, that fetches the service info each time
zeroconf reports the instance has been added or updated.

Zeroconf does not report which interface an answer arrived on, so the interface index is always 0.
"""
import logging
import socket
import sys
import threading
from concurrent.futures import ThreadPoolExecutor

from zeroconf import BadTypeInNameException, InterfaceChoice, IPVersion, NonUniqueNameException, \
    ServiceBrowser, ServiceInfo, ServiceStateChange, Zeroconf, service_type_name

from dnssd_stream.config.config import configure_module
from dnssd_stream.engine.base import DiscoveryEngine, EngineError, EngineHandle, Resolution, \
    ServiceFoundEvent, ServiceLostEvent, ERROR_BAD_PARAM, ERROR_NAME_CONFLICT, ERROR_NO_SUCH_RECORD, \
    ERROR_SERVICE_NOT_RUNNING, ERROR_TIMEOUT, ERROR_UNKNOWN
from dnssd_stream.record import ServiceIdentity

logger = logging.getLogger(__name__)

# configured in zeroconf_engine.default.cfg
resolve_timeout = 3000      # milliseconds to wait for a service to answer a resolve
max_workers = 4             # threads used to resolve services and fetch TXT records
ip_version = 'v4'           # v4, v6 or all
interfaces = 'all'          # default or all

_ip_versions = {
    'v4': IPVersion.V4Only,
    'v6': IPVersion.V6Only,
    'all': IPVersion.All
}

_interface_choices = {
    'default': InterfaceChoice.Default,
    'all': InterfaceChoice.All
}


def _text(value):
    return value.decode('utf-8', 'replace') if isinstance(value, bytes) else value


def decode_txt(properties):
    """
    Converts the properties of a ServiceInfo to a dict of str to str.
    Keys without a value map to the empty string.

    >>> decode_txt({b'path': b'/ipp', b'duplex': None})
    {'path': '/ipp', 'duplex': ''}
    >>> decode_txt(None)
    {}
    """
    return {_text(k): _text(v) if v is not None else '' for k, v in (properties or {}).items()}


def encode_txt(txt_records):
    """
    >>> encode_txt({'path': '/ipp'})
    {b'path': b'/ipp'}
    """
    return {k.encode('utf-8'): v.encode('utf-8') for k, v in (txt_records or {}).items()}


def check_service_type(service_type, strict=True):
    """
    :param strict: when False, accepts the types that a ServiceBrowser accepts
    :raises EngineError: if the service type is not a valid mDNS service type
    """
    try:
        service_type_name(service_type, strict=strict)
    except BadTypeInNameException as e:
        raise EngineError("invalid service type %s: %s" % (service_type, e), ERROR_BAD_PARAM) from e


def strip_root(hostname):
    """
    >>> strip_root('printer.local.')
    'printer.local'
    """
    return hostname[:-1] if hostname and hostname.endswith('.') else hostname


def local_address():
    """ the address of the interface used to reach other hosts """
    s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        s.connect(("10.255.255.255", 1))
        return s.getsockname()[0]
    except OSError:
        return "127.0.0.1"
    finally:
        s.close()


class _BrowserHandle(EngineHandle):
    """ Owns a ServiceBrowser, and stops callbacks once closed. """

    def __init__(self, engine):
        self.engine = engine
        self.browser = None
        self.closed = False
        self.lock = threading.Lock()

    def close(self):
        with self.lock:
            if self.closed:
                return
            self.closed = True
        self.engine._untrack(self)
        if self.browser is not None:
            self.browser.cancel()

    def disconnected(self, error):
        """ called when the engine closes while the handle is open """
        with self.lock:
            if self.closed:
                return
            self.closed = True
        self._failed(error)

    def _failed(self, error):
        raise NotImplementedError


class BrowseHandle(_BrowserHandle):

    def __init__(self, engine, service_type, on_event, on_error):
        super().__init__(engine)
        self.service_type = service_type
        self.on_event = on_event
        self.on_error = on_error

    def state_changed(self, zeroconf, service_type, name, state_change):
        """ handler for the ServiceBrowser """
        if self.closed:
            return
        try:
            identity = ServiceIdentity.from_fullname(name, service_type)
        except ValueError as e:
            logger.warning("ignoring service %s: %s", name, e)
            return
        if state_change is ServiceStateChange.Added:
            self.on_event(ServiceFoundEvent(identity))
        elif state_change is ServiceStateChange.Removed:
            self.on_event(ServiceLostEvent(identity))

    def _failed(self, error):
        if self.browser is not None:
            self.browser.cancel()
        self.on_error(error)


class TxtQueryHandle(_BrowserHandle):

    def __init__(self, engine, identity: ServiceIdentity, on_change, on_error):
        super().__init__(engine)
        self.identity = identity
        self.on_change = on_change
        self.on_error = on_error
        self.last = None
        self.requests = 0       # fetches started
        self.latest = 0         # the most recent fetch to complete

    def state_changed(self, zeroconf, service_type, name, state_change):
        """ handler for the ServiceBrowser """
        if self.closed or name.lower() != self.identity.fullname.lower():
            return
        if state_change in (ServiceStateChange.Added, ServiceStateChange.Updated):
            self.engine.executor.submit(self.fetch)

    def fetch(self):
        with self.lock:
            if self.closed:
                return
            self.requests += 1
            request = self.requests
        try:
            info = self.engine.service_info(self.identity)
        except EngineError as e:
            self.disconnected(e)
            return
        txt_records = decode_txt(info.properties)
        with self.lock:
            # a fetch that completes after a later one has stale records
            if self.closed or request < self.latest:
                return
            self.latest = request
            if txt_records == self.last:
                return
            self.last = txt_records
            self.on_change(txt_records)

    def _failed(self, error):
        self.engine._untrack(self)
        if self.browser is not None:
            self.browser.cancel()
        self.on_error(error)


class RegistrationHandle(EngineHandle):

    def __init__(self, engine, info: ServiceInfo):
        self.engine = engine
        self.info = info
        self.registered = False
        self.closed = False
        self.lock = threading.Lock()

    def _close(self):
        """
        :return: True if the service was registered and must now be unregistered
        """
        with self.lock:
            if self.closed:
                return False
            self.closed = True
            return self.registered

    def close(self):
        if self._close():
            self.engine.executor.submit(self.engine.zeroconf.unregister_service, self.info)
        self.engine._untrack(self)

    def disconnected(self, error):
        if self._close():
            self.engine.zeroconf.unregister_service(self.info)

    def _registered(self):
        """
        :return: False if the handle was closed while the registration was in progress
        """
        with self.lock:
            self.registered = not self.closed
            return self.registered


class ZeroconfEngine(DiscoveryEngine):
    """
    :param zeroconf: the Zeroconf instance to use. When None, one is created from the configured ip_version
        and interfaces, and is closed with the engine.
    :param resolve_timeout: milliseconds to wait for a service to answer. Defaults to the configured value.
    :param max_workers: the size of the thread pool for resolves. Defaults to the configured value.
    :param addresses: the addresses to advertise registered services on. Defaults to the local address.
    :param server: the hostname to advertise registered services on. Defaults to the local hostname.
    """

    def __init__(self, zeroconf: Zeroconf=None, resolve_timeout=None, max_workers=None, addresses=None,
                 server=None):
        self.owns_zeroconf = zeroconf is None
        self.zeroconf = zeroconf if zeroconf is not None else \
            Zeroconf(interfaces=_interface_choices[interfaces], ip_version=_ip_versions[ip_version])
        self.resolve_timeout = resolve_timeout if resolve_timeout is not None else globals()['resolve_timeout']
        self.executor = ThreadPoolExecutor(max_workers=max_workers or globals()['max_workers'],
                                           thread_name_prefix='zeroconf-engine')
        self.addresses = addresses
        self.server = server
        self.handles = set()
        self.lock = threading.Lock()
        self.closed = False

    def _track(self, handle):
        with self.lock:
            if self.closed:
                raise EngineError("the engine is closed", ERROR_SERVICE_NOT_RUNNING)
            self.handles.add(handle)

    def _untrack(self, handle):
        with self.lock:
            self.handles.discard(handle)

    def _browser(self, handle, service_type):
        check_service_type(service_type, strict=False)
        self._track(handle)
        try:
            handle.browser = ServiceBrowser(self.zeroconf, service_type, handlers=[handle.state_changed])
        except BadTypeInNameException as e:
            self._untrack(handle)
            raise EngineError("invalid service type %s: %s" % (service_type, e), ERROR_BAD_PARAM) from e
        return handle

    def browse(self, reg_type, domain, on_event, on_error):
        service_type = ServiceIdentity('', reg_type, domain).service_type
        logger.debug("starting ServiceBrowser for %s", service_type)
        return self._browser(BrowseHandle(self, service_type, on_event, on_error), service_type)

    def service_info(self, identity: ServiceIdentity) -> ServiceInfo:
        """
        Requests the service info, blocking until it arrives.
        :raises EngineError: if the service does not answer in time
        """
        try:
            info = self.zeroconf.get_service_info(identity.service_type, identity.fullname,
                                                  timeout=self.resolve_timeout)
        except BadTypeInNameException as e:
            raise EngineError("invalid service name %s: %s" % (identity, e), ERROR_BAD_PARAM) from e
        if info is None:
            raise EngineError("no answer from %s within %dms" % (identity, self.resolve_timeout), ERROR_TIMEOUT)
        return info

    def _resolve(self, identity):
        info = self.service_info(identity)
        if not info.server or info.port is None:
            raise EngineError("no SRV record for %s" % (identity,), ERROR_NO_SUCH_RECORD)
        ipv4 = info.parsed_addresses(IPVersion.V4Only)
        ipv6 = info.parsed_addresses(IPVersion.V6Only)
        return Resolution(strip_root(info.server), info.port, ipv4[0] if ipv4 else None,
                          ipv6[0] if ipv6 else None)

    def resolve(self, identity, if_index):
        if self.closed:
            raise EngineError("the engine is closed", ERROR_SERVICE_NOT_RUNNING)
        return self.executor.submit(self._resolve, identity)

    def query_txt_records(self, identity, if_index, on_change, on_error):
        handle = self._browser(TxtQueryHandle(self, identity, on_change, on_error), identity.service_type)
        # records already cached are not reported by the browser
        self.executor.submit(handle.fetch)
        return handle

    def _server(self):
        return self.server if self.server is not None else socket.gethostname().split('.')[0] + '.local.'

    def _register(self, handle, on_registered, on_error):
        info = handle.info
        try:
            self.zeroconf.register_service(info, allow_name_change=True)
        except NonUniqueNameException as e:
            self._untrack(handle)
            on_error(EngineError("the name %s is in use: %s" % (info.name, e), ERROR_NAME_CONFLICT))
            return
        except BadTypeInNameException as e:
            self._untrack(handle)
            on_error(EngineError("invalid service name %s: %s" % (info.name, e), ERROR_BAD_PARAM))
            return
        except Exception as e:
            self._untrack(handle)
            error = EngineError("registration of %s failed: %s" % (info.name, e), ERROR_UNKNOWN)
            error.__cause__ = e
            on_error(error)
            return
        if not handle._registered():
            self.zeroconf.unregister_service(info)
            return
        logger.debug("registered %s", info.name)
        on_registered(ServiceIdentity.from_fullname(info.name, info.type))

    def register(self, identity, port, txt_records, on_registered, on_error):
        check_service_type(identity.service_type)
        addresses = self.addresses if self.addresses is not None else [local_address()]
        try:
            info = ServiceInfo(identity.service_type, identity.fullname, port=port,
                               properties=encode_txt(txt_records), server=self._server(),
                               parsed_addresses=addresses)
        except (BadTypeInNameException, ValueError) as e:
            raise EngineError("invalid service %s: %s" % (identity, e), ERROR_BAD_PARAM) from e
        handle = RegistrationHandle(self, info)
        self._track(handle)
        # registration probes the network for conflicts, which takes a few seconds
        self.executor.submit(self._register, handle, on_registered, on_error)
        return handle

    def close(self):
        with self.lock:
            if self.closed:
                return
            self.closed = True
            handles = list(self.handles)
            self.handles.clear()
        for handle in handles:
            handle.disconnected(EngineError("the engine was closed", ERROR_SERVICE_NOT_RUNNING))
        self.executor.shutdown(wait=False)
        if self.owns_zeroconf:
            self.zeroconf.close()
        logger.info("zeroconf engine closed")


configure_module(sys.modules[__name__])
