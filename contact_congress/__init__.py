"""
Contact Congress — deliver constituent messages to legislative offices
through the CWC XML protocol or by filling out their web contact forms.
"""

__version__ = "0.3.0"
