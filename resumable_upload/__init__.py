"""Resumable chunked upload service with instant upload by content hash"""
__version__ = "1.0.0"
