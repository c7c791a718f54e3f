"""Client core for the UniCollab research-collaboration marketplace."""

__version__ = "0.1.0"
