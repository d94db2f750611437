"""DATECAST: weighted-median community date estimates with capacity-aware degradation."""

__version__ = "0.1.0"
