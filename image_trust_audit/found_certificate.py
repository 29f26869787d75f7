from binascii import hexlify
from typing import List, Optional

from cryptography.hazmat.primitives.hashes import SHA1, SHA256
from cryptography.x509 import Certificate

from image_trust_audit.certificate_utils import CertificateUtils


class FoundCertificate:
    """A single X.509 certificate found by a parser inside a container image.
    """

    def __init__(
        self,
        location: str,
        parser: str,
        certificate: Optional[Certificate],
        fingerprint_sha1: bytes,
        fingerprint_sha256: bytes,
    ) -> None:
        if len(fingerprint_sha1) != 20:
            raise ValueError(f'Supplied SHA 1 fingerprint is not 20 bytes long: "{fingerprint_sha1.hex()}"')
        if len(fingerprint_sha256) != 32:
            raise ValueError(f'Supplied SHA 256 fingerprint is not 32 bytes long: "{fingerprint_sha256.hex()}"')

        self._location = location
        self._parser = parser
        self._certificate = certificate
        self._fingerprint_sha1 = fingerprint_sha1
        self._fingerprint_sha256 = fingerprint_sha256

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FoundCertificate):
            return False
        return self.__dict__ == other.__dict__

    def __hash__(self) -> int:
        return hash((self.location, self.parser, self.fingerprint_sha1, self.fingerprint_sha256))

    def __repr__(self) -> str:
        return f"<FoundCertificate {self.location} ({self.parser}) sha256={self.hex_fingerprint_sha256}>"

    # Found certificates are hashed and shared between threads, so they are read-only
    @property
    def location(self) -> str:
        return self._location

    @property
    def parser(self) -> str:
        return self._parser

    @property
    def certificate(self) -> Optional[Certificate]:
        return self._certificate

    @property
    def fingerprint_sha1(self) -> bytes:
        return self._fingerprint_sha1

    @property
    def fingerprint_sha256(self) -> bytes:
        return self._fingerprint_sha256

    @classmethod
    def from_certificate(cls, location: str, parser: str, certificate: Certificate) -> "FoundCertificate":
        # Both fingerprints are computed over the same DER encoding
        return cls(location, parser, certificate, certificate.fingerprint(SHA1()), certificate.fingerprint(SHA256()))

    @property
    def hex_fingerprint_sha1(self) -> str:
        return hexlify(self.fingerprint_sha1).decode("ascii")

    @property
    def hex_fingerprint_sha256(self) -> str:
        return hexlify(self.fingerprint_sha256).decode("ascii")

    @property
    def subject_name(self) -> Optional[str]:
        if self.certificate is None:
            return None
        return CertificateUtils.get_canonical_subject_name(self.certificate)


class PartialCertificate:
    """Something that looks like a certificate but could not be decoded, or another anomaly found by a parser.

    Partial certificates are only reported for diagnostics; they never take part in the validation.
    """

    def __init__(self, location: str, parser: str, reason: str) -> None:
        self.location = location
        self.parser = parser
        self.reason = reason

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PartialCertificate):
            return False
        return self.__dict__ == other.__dict__

    def __hash__(self) -> int:
        return hash((self.location, self.parser, self.reason))

    def __repr__(self) -> str:
        return f"<PartialCertificate {self.location} ({self.parser}): {self.reason}>"


class ParsedCertificates:
    """The certificates found while scanning one file or a whole image.
    """

    def __init__(
        self, found: Optional[List[FoundCertificate]] = None, partials: Optional[List[PartialCertificate]] = None
    ) -> None:
        self.found: List[FoundCertificate] = list(found) if found else []
        self.partials: List[PartialCertificate] = list(partials) if partials else []

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ParsedCertificates):
            return False
        return self.found == other.found and self.partials == other.partials

    def __repr__(self) -> str:
        return f"<ParsedCertificates found={len(self.found)} partials={len(self.partials)}>"

    def merge(self, other: "ParsedCertificates") -> None:
        self.found.extend(other.found)
        self.partials.extend(other.partials)
