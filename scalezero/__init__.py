"""scalezero: on-demand launch and scale-to-zero for paired workload endpoints."""

__version__ = "1.0.0"
