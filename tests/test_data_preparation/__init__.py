"""
Test package for data preparation modules.

Covers the class registry, state inspection, download orchestration,
annotation conversion, scheduling and verification.
"""
