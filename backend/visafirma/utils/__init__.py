from visafirma.utils.security import compute_checksum, create_provider_token

__all__ = [
    "compute_checksum",
    "create_provider_token",
]
