"""
certmigrator: move TLS certificate storage between a directory and a
key-value backend (local files, Redis, S3).
"""

__version__ = "1.0.0"
