"""
Support classes shared by the streams: event sources, value object mixins, background loops and
retry strategies.
"""
