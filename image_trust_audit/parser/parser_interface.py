from abc import ABC, abstractmethod
from threading import Event
from typing import BinaryIO, Callable

from image_trust_audit.found_certificate import ParsedCertificates


EntryOpener = Callable[[], BinaryIO]


class CertificateParserInterface(ABC):
    """Find certificates in a single file extracted from a container image.

    Parsers run concurrently against the same file; each one gets its own reader by calling open_entry() and must
    close it before returning. Raising an exception means the parser failed on this file.
    """

    name: str

    @abstractmethod
    def find(self, location: str, open_entry: EntryOpener, cancel_event: Event) -> ParsedCertificates:
        pass
