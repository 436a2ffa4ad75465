"""
Report Template Builder Engine

Headless model, validation, reordering and persistence/preview coordination
for user-defined report templates.
"""

__version__ = "0.1.0"
