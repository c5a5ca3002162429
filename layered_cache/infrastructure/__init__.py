"""
Infrastructure Module

Cache tiers, backing store implementations and monitoring.
"""
