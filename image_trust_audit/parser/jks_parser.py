import logging
import struct
from threading import Event
from typing import Iterator, Optional, Sequence, Tuple

import jks
from cryptography.x509 import load_der_x509_certificate
from jks.util import KeystoreException, KeystoreSignatureException

from image_trust_audit.found_certificate import FoundCertificate, ParsedCertificates, PartialCertificate
from image_trust_audit.parser.parser_interface import CertificateParserInterface, EntryOpener


_JKS_MAGIC = b"\xfe\xed\xfe\xed"
_JCEKS_MAGIC = b"\xce\xce\xce\xce"

# Default password for the JDK's cacerts key store
DEFAULT_STORE_PASSWORD = "changeit"


class JksCertificateParser(CertificateParserInterface):
    """Find the certificates stored in Java key stores (JKS and JCEKS), such as the JDK's lib/security/cacerts.

    The store's integrity is checked with each of the supplied passwords in turn; private keys are never decrypted.
    """

    name = "jks"

    def __init__(self, store_passwords: Optional[Sequence[str]] = None) -> None:
        self._store_passwords = list(store_passwords) if store_passwords else [DEFAULT_STORE_PASSWORD]

    def find(self, location: str, open_entry: EntryOpener, cancel_event: Event) -> ParsedCertificates:
        parsed = ParsedCertificates()
        with open_entry() as entry_file:
            magic = entry_file.read(4)
            if magic not in (_JKS_MAGIC, _JCEKS_MAGIC):
                return parsed
            entry_file.seek(0)
            store_content = entry_file.read()

        key_store = None
        for password in self._store_passwords:
            try:
                key_store = jks.KeyStore.loads(store_content, password, try_decrypt_keys=False)
                break
            except KeystoreSignatureException:
                # Wrong password; try the next one
                continue
            except (KeystoreException, struct.error, ValueError) as e:
                parsed.partials.append(PartialCertificate(location, self.name, f"failed to load key store: {e}"))
                return parsed

        if key_store is None:
            logging.debug(f"Could not verify the integrity of key store {location}")
            parsed.partials.append(
                PartialCertificate(location, self.name, "key store integrity check failed with every supplied password")
            )
            return parsed

        for alias, der in _iter_certificates(key_store):
            try:
                certificate = load_der_x509_certificate(der)
            except ValueError as e:
                parsed.partials.append(
                    PartialCertificate(location, self.name, f'failed to parse certificate "{alias}": {e}')
                )
                continue
            parsed.found.append(FoundCertificate.from_certificate(location, self.name, certificate))

        return parsed


def _iter_certificates(key_store: jks.KeyStore) -> Iterator[Tuple[str, bytes]]:
    for alias, trusted_entry in key_store.certs.items():
        yield alias, trusted_entry.cert

    # The certificate chains of private key entries are stored in the clear
    for alias, private_key_entry in key_store.private_keys.items():
        for _cert_type, der in private_key_entry.cert_chain:
            yield alias, der
