"""Security primitives: category-keyed field encryption."""
from beacon.security.encryption import DataCategory, FieldEncryptor

__all__ = ["DataCategory", "FieldEncryptor"]
