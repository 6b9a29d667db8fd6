"""
kpdev: build, sign and deploy kintone plugins.
"""

__version__ = "0.4.0"
