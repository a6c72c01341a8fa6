"""Post ↔ article reconciler: ingestion, matching and persistence.

This package pulls social posts and blog articles into one store and links
each post to the article it promotes.
"""
