"""
Shared store package.

Owns the single Redis connection of the process: endpoint resolution,
bounded reconnects, the health flag, and failure-converting command wrappers.
"""
