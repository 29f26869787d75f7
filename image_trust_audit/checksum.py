import re
from binascii import unhexlify


_HEX_RE = re.compile(r"[0-9a-fA-F]*")


class InvalidFingerprintError(ValueError):
    pass


def _parse_hex_digest(hex_string: str, digest_size: int, algorithm_name: str) -> bytes:
    expected_length = digest_size * 2
    if len(hex_string) != expected_length:
        raise InvalidFingerprintError(
            f"{algorithm_name} fingerprint must be {expected_length} hex characters, "
            f'got {len(hex_string)}: "{hex_string}"'
        )
    if not _HEX_RE.fullmatch(hex_string):
        raise InvalidFingerprintError(f'{algorithm_name} fingerprint is not valid hex: "{hex_string}"')
    return unhexlify(hex_string)


def parse_sha1(hex_string: str) -> bytes:
    """Parse a hex-encoded SHA-1 fingerprint into its 20 byte digest.
    """
    return _parse_hex_digest(hex_string, 20, "SHA1")


def parse_sha256(hex_string: str) -> bytes:
    """Parse a hex-encoded SHA-256 fingerprint into its 32 byte digest.
    """
    return _parse_hex_digest(hex_string, 32, "SHA256")
