"""
Gig Feed Collector

Collects upcoming shows from a set of event sources into one JSON feed:
- Fetches every source concurrently, falling back to cached events
- Drops adjacent duplicates and counts shows per category
- Re-hosts show images through a resized, content-addressed image cache
- Serializes runs with an advisory lock held in the configured store

Storage runs on the local filesystem or on AWS (S3 + DynamoDB).
"""

__version__ = "1.0.0"
