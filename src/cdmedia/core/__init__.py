"""Entry points for host applications.

``ImageImporter`` starts disc imports on background workers and hands out
``SessionHandle`` objects for progress subscription and cancellation.
"""
