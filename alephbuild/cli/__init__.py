"""aleph-build CLI — Typer-based command-line interface.

Provides the ``aleph-build`` command with subcommands for running the
pipeline, listing artifact names, and inspecting, fetching and purging
published artifacts.

All output uses Rich for formatted terminal display.
"""
