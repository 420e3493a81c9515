"""Core domain package for fedimod.

Core contains signature verification, event normalization, rule matching and
moderation orchestration without any HTTP or storage-specific code, keeping
the business logic portable.
"""
