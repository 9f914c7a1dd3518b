"""
CloudPRNT Emulator.
Emulates a network receipt printer that talks to a CloudPRNT server.
"""

__version__ = "1.0.0"
