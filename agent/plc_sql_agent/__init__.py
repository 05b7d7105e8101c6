"""PLC to SQL register logging agent.

Polls data registers over the binary 3E frame protocol, shows the latest
values through a local API and writes them to a database per register,
on an interval, on change, or both, gated by an optional log condition.
"""

from .version import VERSION

__all__ = ["VERSION"]
