"""Lead scoring and campaign assignment engine for automation-service prospects."""

__version__ = "1.0.0"
