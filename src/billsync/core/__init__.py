"""Core services and cross-cutting concerns.

Import from the subpackages (``billsync.core.database``,
``billsync.core.errors`` and so on). ``billsync.config`` loads
``billsync.core.constants`` while it is still initializing, so this
package must not import anything that reads settings.
"""
