"""
Poster Pipeline
===============

Turns AI-generated poster markup into an editable element model and into
batches of personalised PNG artifacts.

This package provides:
- Structure parsing of poster markup (tagged and generic dialects)
- Non-throwing validation of recovered poster elements
- Off-screen mounting and rasterization with Playwright
- A sequential, cancellable, resumable batch orchestrator
"""

__version__ = "1.0.0"
__author__ = "Poster Pipeline Team"
