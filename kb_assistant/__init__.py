"""
KB Article Assistant: chat server that helps writers draft support articles
in the RingCentral house style, with article search and style rewrite tools.
"""

__version__ = "0.1.0"
