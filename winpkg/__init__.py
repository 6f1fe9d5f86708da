"""
Installer for Hadoop-ecosystem components running as Windows services.
"""

__version__ = "1.0.0"
