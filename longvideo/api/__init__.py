"""
HTTP API for long video generation.
"""
