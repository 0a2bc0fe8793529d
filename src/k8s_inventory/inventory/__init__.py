"""Retrieval and shaping of Kubernetes inventory objects.

Submodules
----------
namespaces -- namespace listing and include/exclude filtering.
nodes      -- node listing, keyed by node name.
pods       -- pod listing per namespace and Pod records.
containers -- container extraction from pod spec and status.
util       -- pagination and annotation/label filtering.
"""
