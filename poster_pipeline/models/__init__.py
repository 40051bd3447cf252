"""
Models Module
=============

Pydantic models shared by the markup parser and the batch orchestrator.
"""
