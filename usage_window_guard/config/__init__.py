"""
Configuration loading for the monitor.
"""
