"""Rip pipeline: reader process, output parsing, session control and bundle assembly.

Each stage is a separate module so it can be replaced with a test double
without touching the others.
"""
