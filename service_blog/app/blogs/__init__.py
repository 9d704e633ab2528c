"""
Blog content package: primary store interfaces and cache-aware operations.
"""
