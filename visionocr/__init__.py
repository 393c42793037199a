"""
visionocr: PDF text extraction through a vision-capable language model.
"""

__version__ = "1.0.0"
