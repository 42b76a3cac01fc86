"""Decision logic for scheduling, scaling and syncing managed cluster upgrades."""

__version__ = "0.1.0"