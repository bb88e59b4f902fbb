"""Laboratory preventive maintenance (PMC) backend."""

__version__ = "1.0.0"
