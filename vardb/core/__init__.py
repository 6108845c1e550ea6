"""
Query engine and shard scheduler
"""
