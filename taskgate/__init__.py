"""
taskgate - dependency-aware task scheduling with a safety-gated pre-PR pipeline.

Plans PRD tasks into waves, runs coding agents against them, and gates each
task's changes behind rebase, build, typecheck and file-boundary checks.
"""

__version__ = "0.1.0"
