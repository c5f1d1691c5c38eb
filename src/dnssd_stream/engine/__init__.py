"""
The engine package describes the discovery engine that speaks mDNS/DNS-SD on the wire, which the
streams consume but never implement.

The DiscoveryEngine base class is the contract - browse, resolve, query TXT records and register.
ZeroconfEngine implements the contract using python-zeroconf.
"""
