"""Private installer update distribution server"""

__version__ = "1.0.0"
