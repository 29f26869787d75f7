from threading import Event
from typing import Optional

from cryptography.x509 import load_der_x509_certificate

from image_trust_audit.found_certificate import FoundCertificate, ParsedCertificates, PartialCertificate
from image_trust_audit.parser.parser_interface import CertificateParserInterface, EntryOpener


_DER_SEQUENCE_TAG = 0x30

# Smaller SEQUENCEs cannot hold the mandatory fields of a certificate
_MIN_CERTIFICATE_LENGTH = 64


def _get_der_sequence_length(header: bytes) -> Optional[int]:
    """Return the total length (header included) of the DER SEQUENCE starting at the beginning of header.
    """
    if len(header) < 2 or header[0] != _DER_SEQUENCE_TAG:
        return None

    first_length_byte = header[1]
    if first_length_byte < 0x80:
        return 2 + first_length_byte

    # Long form; 0x80 (indefinite length) is not allowed in DER
    length_bytes_count = first_length_byte & 0x7F
    if length_bytes_count == 0 or length_bytes_count > 4 or len(header) < 2 + length_bytes_count:
        return None
    content_length = int.from_bytes(header[2 : 2 + length_bytes_count], "big")
    return 2 + length_bytes_count + content_length


class DerCertificateParser(CertificateParserInterface):
    """Find files that contain exactly one DER-encoded certificate (.der, .cer, .crt files, etc.).
    """

    name = "der"

    def find(self, location: str, open_entry: EntryOpener, cancel_event: Event) -> ParsedCertificates:
        parsed = ParsedCertificates()
        with open_entry() as entry_file:
            header = entry_file.read(6)
            # Only files made of a single DER SEQUENCE can be a certificate
            expected_length = _get_der_sequence_length(header)
            if expected_length is None or expected_length < _MIN_CERTIFICATE_LENGTH:
                return parsed

            entry_file.seek(0, 2)
            if entry_file.tell() != expected_length:
                return parsed

            entry_file.seek(0)
            der = entry_file.read()

        try:
            certificate = load_der_x509_certificate(der)
        except ValueError as e:
            parsed.partials.append(PartialCertificate(location, self.name, f"failed to parse certificate: {e}"))
            return parsed

        parsed.found.append(FoundCertificate.from_certificate(location, self.name, certificate))
        return parsed
