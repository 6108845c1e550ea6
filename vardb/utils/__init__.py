"""
Shared data types, statistics, configuration and errors
"""
