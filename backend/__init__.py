"""
HTTP surface for the focal attention engine.
"""
