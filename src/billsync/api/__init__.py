"""HTTP API surface.

The root router lives in ``billsync.api.router``; importing this package
alone does not trigger module discovery.
"""
