"""
HTTP API for Fortune City.
"""
