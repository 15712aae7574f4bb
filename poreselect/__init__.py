"""poreselect - real-time adaptive sampling for nanopore sequencers."""

__version__ = "0.1.0"
