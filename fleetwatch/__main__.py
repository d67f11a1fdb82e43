"""Entry point for `python -m fleetwatch`.

Usage:
    python -m fleetwatch run
    python -m fleetwatch check-config /etc/fleetwatch/alertmanager.yml
"""

from __future__ import annotations

from fleetwatch.cli import cli

cli()
