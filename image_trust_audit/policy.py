from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple, Union

import yaml

from image_trust_audit.found_certificate import FoundCertificate


SUPPORTED_CONFIG_VERSION = "1"

DEFAULT_CONFIG_FILE_NAME = ".image-trust-audit.yaml"


class ConfigurationError(ValueError):
    pass


class CertificateFingerprints:
    def __init__(self, sha1: Optional[str] = None, sha256: Optional[str] = None) -> None:
        self.sha1 = sha1 or None
        self.sha256 = sha256 or None

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CertificateFingerprints):
            return False
        return self.__dict__ == other.__dict__

    def __hash__(self) -> int:
        return hash((self.sha1, self.sha256))

    def __repr__(self) -> str:
        return f"<CertificateFingerprints sha1={self.sha1} sha256={self.sha256}>"


class CertificateEntry:
    """One certificate listed in the allow, forbid or require list of a policy.

    An entry is keyed by a single fingerprint; if both are supplied, the SHA-256 one is used.
    """

    def __init__(self, fingerprints: CertificateFingerprints, comment: Optional[str] = None) -> None:
        self.fingerprints = fingerprints
        self.comment = comment

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CertificateEntry):
            return False
        return self.__dict__ == other.__dict__

    def __hash__(self) -> int:
        return hash((self.fingerprints, self.comment))

    def __repr__(self) -> str:
        return f"<CertificateEntry {self.fingerprints!r} comment={self.comment!r}>"

    def preferred_fingerprint(self) -> Optional[Tuple[str, str]]:
        """Return the (algorithm, hex fingerprint) pair used to match this entry, or None if it has no fingerprint.
        """
        if self.fingerprints.sha256:
            return "sha256", self.fingerprints.sha256
        if self.fingerprints.sha1:
            return "sha1", self.fingerprints.sha1
        return None

    def describe(self) -> str:
        preferred = self.preferred_fingerprint()
        fingerprint_text = f"{preferred[0].upper()} {preferred[1]}" if preferred else "no fingerprint"
        if self.comment:
            return f"{self.comment} ({fingerprint_text})"
        return fingerprint_text

    @classmethod
    def from_dict(cls, entry_dict: Any, list_name: str, index: int) -> "CertificateEntry":
        location = f"entry at position {index} in {list_name} list"
        if not isinstance(entry_dict, dict):
            raise ConfigurationError(f"{location} is not a mapping")

        fingerprints_dict = entry_dict.get("fingerprints") or {}
        if not isinstance(fingerprints_dict, dict):
            raise ConfigurationError(f'{location} has an invalid "fingerprints" field')
        unknown_keys = set(fingerprints_dict.keys()) - {"sha1", "sha256"}
        if unknown_keys:
            raise ConfigurationError(f"{location} has unsupported fingerprints: {', '.join(sorted(unknown_keys))}")

        for algorithm, value in fingerprints_dict.items():
            # An unquoted all-digits fingerprint would be loaded as an int and lose its leading zeros
            if value is not None and not isinstance(value, str):
                raise ConfigurationError(f"{location} has a {algorithm} fingerprint that is not a quoted string")

        comment = entry_dict.get("comment")
        return cls(
            CertificateFingerprints(sha1=fingerprints_dict.get("sha1"), sha256=fingerprints_dict.get("sha256")),
            None if comment is None else str(comment),
        )

    @classmethod
    def from_found_certificate(cls, found: FoundCertificate) -> "CertificateEntry":
        return cls(CertificateFingerprints(sha256=found.hex_fingerprint_sha256), found.subject_name)


class Config:
    """A policy listing the certificate authorities that are allowed, forbidden or required in an image.
    """

    def __init__(
        self,
        version: str = SUPPORTED_CONFIG_VERSION,
        allow: Iterable[CertificateEntry] = (),
        forbid: Iterable[CertificateEntry] = (),
        require: Iterable[CertificateEntry] = (),
    ) -> None:
        self.version = version
        self.allow: List[CertificateEntry] = list(allow)
        self.forbid: List[CertificateEntry] = list(forbid)
        self.require: List[CertificateEntry] = list(require)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Config):
            return False
        return self.__dict__ == other.__dict__

    @classmethod
    def from_yaml(cls, yaml_file_path: Union[str, Path]) -> "Config":
        with open(yaml_file_path, mode="r") as config_file:
            try:
                config_dict = yaml.safe_load(config_file)
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Could not parse {yaml_file_path}: {e}") from e

        # An empty file is an empty policy
        if config_dict is None:
            config_dict = {}
        return cls.from_dict(config_dict)

    @classmethod
    def from_dict(cls, config_dict: Any) -> "Config":
        if not isinstance(config_dict, dict):
            raise ConfigurationError("The configuration must be a mapping")

        lists: Dict[str, List[CertificateEntry]] = {}
        for list_name in ("allow", "forbid", "require"):
            raw_entries = config_dict.get(list_name) or []
            if not isinstance(raw_entries, list):
                raise ConfigurationError(f'The "{list_name}" field must be a list')
            lists[list_name] = [
                CertificateEntry.from_dict(raw_entry, list_name, index) for index, raw_entry in enumerate(raw_entries)
            ]

        version = config_dict.get("version", SUPPORTED_CONFIG_VERSION)
        return cls(str(version), lists["allow"], lists["forbid"], lists["require"])

    @classmethod
    def from_found_certificates(cls, found_certificates: Sequence[FoundCertificate]) -> "Config":
        """Build a policy that allows exactly the certificate authorities that were found, once each.
        """
        seen_fingerprints: Set[bytes] = set()
        allow = []
        for found in found_certificates:
            if found.fingerprint_sha256 in seen_fingerprints:
                continue
            seen_fingerprints.add(found.fingerprint_sha256)
            allow.append(CertificateEntry.from_found_certificate(found))
        return cls(allow=allow)

    def validate(self) -> None:
        """Check the shape of the policy; raise a ConfigurationError describing the first problem found.
        """
        if self.version != SUPPORTED_CONFIG_VERSION:
            raise ConfigurationError(
                f'Unsupported configuration version "{self.version}"; expected "{SUPPORTED_CONFIG_VERSION}"'
            )

        for list_name, entries in (("allow", self.allow), ("forbid", self.forbid), ("require", self.require)):
            for index, entry in enumerate(entries):
                if entry.preferred_fingerprint() is None:
                    raise ConfigurationError(f"entry at position {index} in {list_name} list has no fingerprint")

        forbidden_fingerprints = {_normalize(entry.preferred_fingerprint()) for entry in self.forbid}
        for index, entry in enumerate(self.require):
            if _normalize(entry.preferred_fingerprint()) in forbidden_fingerprints:
                raise ConfigurationError(f"entry at position {index} in require list is also in the forbid list")


def _normalize(fingerprint: Optional[Tuple[str, str]]) -> Optional[Tuple[str, str]]:
    if fingerprint is None:
        return None
    return fingerprint[0], fingerprint[1].lower()


# YAML serialization helpers
def _represent_config(dumper: yaml.Dumper, config: Config) -> yaml.Node:
    final_dict = {
        "version": config.version,
        "allow": config.allow,
        "forbid": config.forbid,
        "require": config.require,
    }
    return dumper.represent_dict(final_dict.items())


yaml.add_representer(Config, _represent_config)


def _represent_certificate_entry(dumper: yaml.Dumper, entry: CertificateEntry) -> yaml.Node:
    fingerprints = {}
    if entry.fingerprints.sha1:
        fingerprints["sha1"] = entry.fingerprints.sha1
    if entry.fingerprints.sha256:
        fingerprints["sha256"] = entry.fingerprints.sha256

    final_dict: Dict[str, Any] = {"fingerprints": fingerprints}
    if entry.comment:
        final_dict["comment"] = entry.comment
    return dumper.represent_dict(final_dict.items())


yaml.add_representer(CertificateEntry, _represent_certificate_entry)
