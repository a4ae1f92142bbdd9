"""
Turn-taking and echo-suppression engine for spoken English practice.
"""

__version__ = "0.1.0"
