"""Utility modules for scalezero.

Modules:
    async_utils: Injectable clock, poll_until(), async subprocess execution
    exceptions: scalezero exception hierarchy and narrow-catch tuples
"""
