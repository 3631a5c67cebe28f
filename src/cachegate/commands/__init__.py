"""Built-in CLI sub-commands for cachegate.

* :mod:`~cachegate.commands.cache` -- inspect, clear, and key the response cache.
* :mod:`~cachegate.commands.config` -- view and modify global settings.

Each module exports a :class:`typer.Typer` sub-application for multi-command
groups, or a plain callback registered directly on the root app (``key``).
"""
