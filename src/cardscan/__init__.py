"""
CardScan - Card Number Capture

Samples OCR text from camera frames and commits a card number (and,
opportunistically, an expiry date) once it has been read identically
across consecutive frames.
"""

__version__ = "0.1.0"
