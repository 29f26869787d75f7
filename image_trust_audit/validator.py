import logging
from typing import Dict, List, Optional, Sequence, Set

from image_trust_audit.checksum import InvalidFingerprintError, parse_sha1, parse_sha256
from image_trust_audit.found_certificate import FoundCertificate
from image_trust_audit.policy import CertificateEntry, Config, ConfigurationError


class ForbiddenCertificate:
    """A certificate found in the image that matches an entry of the forbid list.
    """

    def __init__(self, certificate: FoundCertificate, entry: CertificateEntry) -> None:
        self.certificate = certificate
        self.entry = entry

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ForbiddenCertificate):
            return False
        return self.__dict__ == other.__dict__

    def __repr__(self) -> str:
        return f"<ForbiddenCertificate {self.certificate!r} entry={self.entry!r}>"


class ValidationResult:
    def __init__(
        self,
        not_allowed_certificates: Optional[List[FoundCertificate]] = None,
        forbidden_certificates: Optional[List[ForbiddenCertificate]] = None,
        required_but_absent: Optional[List[CertificateEntry]] = None,
    ) -> None:
        self.not_allowed_certificates = not_allowed_certificates or []
        self.forbidden_certificates = forbidden_certificates or []
        self.required_but_absent = required_but_absent or []

    def is_pass(self) -> bool:
        return not (self.not_allowed_certificates or self.forbidden_certificates or self.required_but_absent)


class Validator:
    """Check the certificates found in an image against a policy.

    The policy is compiled into fingerprint lookups when the validator is created. In strict mode, every certificate
    must be in the allow or require list; in permissive mode, only the forbid and require lists are enforced. The
    validator is never modified after __init__() and can be shared between threads.
    """

    def __init__(self, config: Config, permissive_mode: bool = False) -> None:
        config.validate()

        self.permissive_mode = permissive_mode
        self._allow_sha1: Set[bytes] = set()
        self._allow_sha256: Set[bytes] = set()
        self._forbid_sha1: Dict[bytes, CertificateEntry] = {}
        self._forbid_sha256: Dict[bytes, CertificateEntry] = {}
        self._required = list(config.require)

        # Required certificates are implicitly allowed; the require list is parsed in both modes to reject bad entries
        for list_name, entries in (("allow", config.allow), ("require", config.require)):
            if permissive_mode and list_name == "allow":
                continue
            for index, entry in enumerate(entries):
                if entry.fingerprints.sha256:
                    sha256 = _parse_entry_sha256(entry.fingerprints.sha256, list_name, index)
                    if not permissive_mode:
                        self._allow_sha256.add(sha256)
                elif entry.fingerprints.sha1:
                    sha1 = _parse_entry_sha1(entry.fingerprints.sha1, list_name, index)
                    if not permissive_mode:
                        self._allow_sha1.add(sha1)

        for index, entry in enumerate(config.forbid):
            if entry.fingerprints.sha256:
                self._forbid_sha256[_parse_entry_sha256(entry.fingerprints.sha256, "forbid", index)] = entry
            elif entry.fingerprints.sha1:
                self._forbid_sha1[_parse_entry_sha1(entry.fingerprints.sha1, "forbid", index)] = entry

        logging.info(f"Loaded policy: {self.describe_config()}")

    def describe_config(self) -> str:
        description = (
            f"{len(self._allow_sha1) + len(self._allow_sha256)} allowed, "
            f"{len(self._forbid_sha1) + len(self._forbid_sha256)} forbidden, "
            f"and {len(self._required)} required certificates"
        )
        if self.permissive_mode:
            return description + ", in permissive mode"
        return description + ", in strict mode"

    def is_allowed(self, found: FoundCertificate) -> bool:
        return found.fingerprint_sha1 in self._allow_sha1 or found.fingerprint_sha256 in self._allow_sha256

    def is_forbidden(self, found: FoundCertificate) -> Optional[CertificateEntry]:
        """Return the forbid list entry matching the certificate, or None.
        """
        entry = self._forbid_sha1.get(found.fingerprint_sha1)
        if entry is not None:
            return entry
        return self._forbid_sha256.get(found.fingerprint_sha256)

    def validate(self, found_certificates: Sequence[FoundCertificate]) -> ValidationResult:
        result = ValidationResult()
        seen_sha1: Set[bytes] = set()
        seen_sha256: Set[bytes] = set()

        for found in found_certificates:
            seen_sha1.add(found.fingerprint_sha1)
            seen_sha256.add(found.fingerprint_sha256)

            if not self.permissive_mode and not self.is_allowed(found):
                result.not_allowed_certificates.append(found)

            # A certificate can be both allowed and forbidden; the forbid list is always reported
            forbid_entry = self.is_forbidden(found)
            if forbid_entry is not None:
                result.forbidden_certificates.append(ForbiddenCertificate(found, forbid_entry))

        for required in self._required:
            # The fingerprints were already checked in __init__()
            if required.fingerprints.sha256:
                if parse_sha256(required.fingerprints.sha256) not in seen_sha256:
                    result.required_but_absent.append(required)
            elif required.fingerprints.sha1:
                if parse_sha1(required.fingerprints.sha1) not in seen_sha1:
                    result.required_but_absent.append(required)

        return result


def _parse_entry_sha256(fingerprint: str, list_name: str, index: int) -> bytes:
    try:
        return parse_sha256(fingerprint)
    except InvalidFingerprintError as e:
        raise ConfigurationError(f"entry at position {index} in {list_name} list had invalid SHA256: {e}") from e


def _parse_entry_sha1(fingerprint: str, list_name: str, index: int) -> bytes:
    try:
        return parse_sha1(fingerprint)
    except InvalidFingerprintError as e:
        raise ConfigurationError(f"entry at position {index} in {list_name} list had invalid SHA1: {e}") from e
