"""fleetwatch: scrape-target discovery and alert routing for an elastic container fleet."""

__version__ = "0.3.0"
