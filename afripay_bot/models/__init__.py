"""Session dataclasses and domain enums.
"""
