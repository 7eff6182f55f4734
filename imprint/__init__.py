"""
Imprint - Template-Driven Image Upload Service

Accepts uploaded images, applies a named template of transformation rules
and hands the result to a storage backend.
"""
