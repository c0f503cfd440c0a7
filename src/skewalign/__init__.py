"""
SkewAlign - skew estimation and text geometry reconciliation

This package estimates the rotational skew of scanned page images and
reconciles recognized text lines with independently detected line geometry,
so that an invisible, searchable text layer can be placed in alignment with
the original page content.
"""

__version__ = "1.0.0"
__author__ = "SkewAlign Team"
__license__ = "GPL-3.0"

__all__ = ["__version__", "__author__", "__license__"]
