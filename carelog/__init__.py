"""
carelog — Long-term-care chat transcript evidence archive.
"""

__version__ = '1.0.0'
