"""fwflash - build embedded firmware from git and flash it to attached devices."""

__version__ = "0.1.0"
