"""
Configuration Module
====================

Application settings and structured logging configuration.
"""
