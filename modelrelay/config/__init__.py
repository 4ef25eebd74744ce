"""
Configuration for modelrelay.

Settings come from an optional YAML file overlaid by environment
variables, validated by the pydantic schema in ``settings``.
"""
