"""
Setup file.
"""

import os

from setuptools import setup

URL = "https://github.com/fwflash/fwflash"
KEYWORDS = "embedded firmware build flash platformio expresslrs orchestrator toolchain"
HERE = os.path.dirname(os.path.abspath(__file__))


if __name__ == "__main__":
    setup(
        keywords=KEYWORDS,
        url=URL,
    )
