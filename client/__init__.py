"""Command-line client for the upload service"""
