"""
SketchDB - collaborative ER diagram editor backend
"""
__version__ = "0.1.0"
