"""Holiday Park availability monitor."""

__version__ = "1.0.0"
