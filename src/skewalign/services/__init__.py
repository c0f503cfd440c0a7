"""
SkewAlign - Services Package

Page pipeline, document processing and the default adapters for
rasterization, recognition, geometry detection and overlay writing.
"""

from skewalign.services.document import process_document
from skewalign.services.page_pipeline import PageProcessor

__all__ = ["PageProcessor", "process_document"]
