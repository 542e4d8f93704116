from __future__ import annotations


class ConfigurationError(ValueError):
    """
    A layer or style document that cannot work as configured.

    Raised to the caller; never swallowed by the load loop.
    """


class StyleError(ConfigurationError):
    pass
