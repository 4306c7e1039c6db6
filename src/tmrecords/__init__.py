"""Trackmania 記録監視システム"""

__version__ = "0.1.0"
