"""
Blog caching package.

Cache-aside reads in front of the primary store and explicit invalidation
after confirmed writes. Entries always carry a TTL and are never updated in
place.
"""
