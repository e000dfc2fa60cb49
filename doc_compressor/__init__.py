"""
Document Compressor - raster compression pipeline for images and PDFs.

This package recompresses images toward a target byte budget and rebuilds
PDFs by rasterizing, recompressing and reassembling every page.
"""

__version__ = "1.0.0"
__author__ = "Document Compressor"
