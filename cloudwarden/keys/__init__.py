"""Credential health checking: classification, probing, batching and the scheduled sweep."""
