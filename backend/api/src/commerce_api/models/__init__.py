"""API request/response models.

Domain models live in commerce_core.models and validate strictly. The
models here are the HTTP shapes: requests are parsed from JSON and
responses are built from the domain models.
"""
