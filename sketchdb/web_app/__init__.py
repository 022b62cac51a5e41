"""
SketchDB web application
"""
