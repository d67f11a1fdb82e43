"""fleetwatch command-line interface.

Exposes:
    cli -- Click group entry point (registered as ``fleetwatch`` script).
"""

from fleetwatch.cli.main import cli

__all__ = ["cli"]
