"""
Rendering Module
================

Off-screen mounting of poster markup and PNG rasterization.

Components:
- surface: isolated mount host and browser pool
- rasterizer: rasterization capability and artifact encoding
- templates: jinja2 shell for mounted markup
"""
