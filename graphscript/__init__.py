"""
graphscript — compile visual pipeline graphs into standalone Python scripts.
"""

__version__ = "0.4.0"

TOOL_NAME = "graphscript"
