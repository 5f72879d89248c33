"""
HTLC CLI Commands Package

Command modules for the HTLC toolkit CLI.
"""

__all__ = ['htlc', 'swap']
