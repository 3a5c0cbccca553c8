"""Deploy CloudFormation templates, splitting oversized ones into nested stacks."""

__version__ = "0.1.0"
