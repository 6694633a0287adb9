"""
livestream-dl: capture HLS live and on-demand streams into ordered, decrypted
segment files.
"""

__version__ = "0.6.0"
