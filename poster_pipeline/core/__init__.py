"""
Core Business Logic
===================

Core modules for poster markup processing and batch rendering.

Modules:
- markup: stylesheet scanning, dialect-aware parsing and element validation
- rendering: off-screen mounting and PNG rasterization with browser automation
- batch: sequential task orchestration, variants and artifact delivery
"""
