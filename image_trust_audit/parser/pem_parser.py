import base64
import binascii
import io
import mmap
import re
from threading import Event
from typing import BinaryIO, Union

from cryptography.x509 import load_der_x509_certificate

from image_trust_audit.found_certificate import FoundCertificate, ParsedCertificates, PartialCertificate
from image_trust_audit.parser.parser_interface import CertificateParserInterface, EntryOpener


# -----BEGIN LABEL----- ... -----END LABEL-----, with the same label on both lines
_PEM_BLOCK_RE = re.compile(rb"-----BEGIN ([\x20-\x2c\x2e-\x7e]*)-----([^-]*)-----END \1-----")


def _map_entry(entry_file: BinaryIO) -> Union[bytes, mmap.mmap]:
    # Entries spooled to disk are mapped instead of read, so that they never have to fit in memory
    try:
        file_descriptor = entry_file.fileno()
    except (io.UnsupportedOperation, AttributeError):
        return entry_file.read()

    # Empty files cannot be mapped
    if entry_file.seek(0, io.SEEK_END) == 0:
        return b""
    return mmap.mmap(file_descriptor, 0, access=mmap.ACCESS_READ)


class PemCertificateParser(CertificateParserInterface):
    """Find PEM-encoded certificates anywhere in a file, including bundles with many certificates.
    """

    name = "pem"

    def find(self, location: str, open_entry: EntryOpener, cancel_event: Event) -> ParsedCertificates:
        with open_entry() as entry_file:
            content = _map_entry(entry_file)
            try:
                return self._find_in_content(location, content)
            finally:
                if isinstance(content, mmap.mmap):
                    content.close()

    def _find_in_content(self, location: str, content: Union[bytes, mmap.mmap]) -> ParsedCertificates:
        parsed = ParsedCertificates()
        # Most files in an image contain no PEM data at all
        if content.find(b"-----BEGIN ") == -1:
            return parsed

        for match in _PEM_BLOCK_RE.finditer(content):
            label, body = match.group(1), match.group(2)
            if label != b"CERTIFICATE":
                continue
            # Encrypted or otherwise annotated blocks are not plain certificates
            if b":" in body:
                continue

            try:
                der = base64.b64decode(b"".join(body.split()), validate=True)
            except binascii.Error as e:
                parsed.partials.append(PartialCertificate(location, self.name, f"invalid PEM base64 data: {e}"))
                continue

            try:
                certificate = load_der_x509_certificate(der)
            except ValueError as e:
                parsed.partials.append(PartialCertificate(location, self.name, f"failed to parse certificate: {e}"))
                continue

            parsed.found.append(FoundCertificate.from_certificate(location, self.name, certificate))

        return parsed
