"""Tenant resource metering and periodic billing."""

__version__ = "0.1.0"

__all__: list[str] = ["__version__"]
