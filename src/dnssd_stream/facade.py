"""
Puts the streams together behind one object bound to a discovery engine.

    dnssd = Dnssd(ZeroconfEngine())
    services = (dnssd.browse('_http._tcp', 'local.')
                .compose(dnssd.resolve())
                .compose(dnssd.query_records()))
    with services.subscribe(on_record=print) as subscription:
        while True:
            subscription.update(timeout=1)

resolve() and query_records() return operators, so either can be applied on its own, and to any
ServiceStream.
"""
from dnssd_stream.browse import BrowseStream
from dnssd_stream.query import QueryStream
from dnssd_stream.record import ServiceIdentity
from dnssd_stream.register import RegisterStream
from dnssd_stream.resolve import ResolveStream


class Dnssd:
    """
    :param engine: the DiscoveryEngine used by all the streams created
    """

    def __init__(self, engine):
        self.engine = engine

    def browse(self, reg_type, domain='local.') -> BrowseStream:
        """ a stream of the services of the given type found in the domain """
        return BrowseStream(self.engine, reg_type, domain)

    def resolve(self):
        """ an operator that resolves the host, port and addresses of each service in a stream """
        return lambda upstream: ResolveStream(upstream, self.engine)

    def query_records(self):
        """ an operator that adds the TXT records of each resolved service in a stream """
        return lambda upstream: QueryStream(upstream, self.engine)

    def register(self, service_name, reg_type, port, txt_records=None, domain='local.') -> RegisterStream:
        """ a stream that advertises a service while it is subscribed """
        return RegisterStream(self.engine, ServiceIdentity(service_name, reg_type, domain), port, txt_records)

    def close(self):
        self.engine.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
