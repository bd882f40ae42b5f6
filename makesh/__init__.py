"""
makesh: native fast paths for `$(shell ...)` commands in Makefile evaluation.
"""
__version__ = "0.1.0"
