import logging
import posixpath
import tarfile
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from threading import Event
from typing import BinaryIO, List, Optional, Sequence, Union

from image_trust_audit.entry_buffer import ArchiveEntryBuffer, DEFAULT_MEMORY_THRESHOLD
from image_trust_audit.found_certificate import ParsedCertificates
from image_trust_audit.parser import CertificateParserInterface, get_parsers


class CertificateScanError(Exception):
    """The scan of an image did not complete; parsed holds whatever was found before the failure, if anything.
    """

    def __init__(self, message: str, parsed: Optional[ParsedCertificates] = None) -> None:
        super().__init__(message)
        self.parsed = parsed


class CertificateParserError(CertificateScanError):
    pass


class ScanCancelledError(CertificateScanError):
    pass


def _get_entry_location(entry_name: str) -> str:
    # Entries are reported as absolute paths inside the image
    return posixpath.normpath("/" + entry_name.lstrip("/"))


class CertificateScanner:
    """Find every certificate inside a container image exported as an uncompressed TAR archive.

    Entries are processed one at a time; all the parsers run concurrently against the current entry and the scanner
    waits for all of them before moving to the next entry, so at most one entry is buffered at any time.
    """

    def __init__(
        self,
        parsers: Optional[Sequence[CertificateParserInterface]] = None,
        scratch_dir: Optional[Union[str, Path]] = None,
        memory_threshold: int = DEFAULT_MEMORY_THRESHOLD,
    ) -> None:
        self._parsers = list(parsers) if parsers is not None else get_parsers()
        if not self._parsers:
            raise ValueError("At least one certificate parser is required")
        self._scratch_dir = scratch_dir
        self._memory_threshold = memory_threshold

    @property
    def parser_names(self) -> List[str]:
        return [parser.name for parser in self._parsers]

    def find_certificates(self, image_tar: BinaryIO, cancel_event: Optional[Event] = None) -> ParsedCertificates:
        """Scan the supplied TAR stream; it is read once, from start to end, and never seeked.

        Raises CertificateParserError if a parser failed on any file, as the results would then be incomplete.
        """
        if cancel_event is None:
            cancel_event = Event()

        parsed = ParsedCertificates()
        scanned_entries_count = 0
        with ThreadPoolExecutor(max_workers=len(self._parsers), thread_name_prefix="certificate-parser") as executor:
            with tarfile.open(fileobj=image_tar, mode="r|") as tar_file:
                for member in tar_file:
                    if not member.isreg():
                        continue

                    entry_file = tar_file.extractfile(member)
                    if entry_file is None:
                        continue

                    location = _get_entry_location(member.name)
                    logging.debug(f"Scanning {location} ({member.size} bytes)")
                    entry_buffer = ArchiveEntryBuffer.from_stream(
                        location, member.size, entry_file, self._scratch_dir, self._memory_threshold
                    )
                    errors = self._run_parsers(executor, location, entry_buffer, cancel_event, parsed)

                    try:
                        entry_buffer.release()
                    except OSError as e:
                        errors.append(f"failed to remove temporary file for {location}: {e}")

                    if cancel_event.is_set():
                        raise ScanCancelledError("Certificate scan was cancelled")

                    if errors:
                        raise CertificateParserError(
                            f"parser error finding certificates: {'; '.join(errors)}", parsed=parsed
                        )
                    scanned_entries_count += 1

        logging.info(
            f"Scanned {scanned_entries_count} files: found {len(parsed.found)} certificates and "
            f"{len(parsed.partials)} partial certificates"
        )
        return parsed

    def _run_parsers(
        self,
        executor: ThreadPoolExecutor,
        location: str,
        entry_buffer: ArchiveEntryBuffer,
        cancel_event: Event,
        parsed: ParsedCertificates,
    ) -> List[str]:
        futures: List[Future] = [
            executor.submit(parser.find, location, entry_buffer.open, cancel_event) for parser in self._parsers
        ]

        # Merge in the order of the parsers so the results are the same from one scan to the next
        errors = []
        for parser, future in zip(self._parsers, futures):
            try:
                parser_parsed = future.result()
            except Exception as e:
                logging.error(f'Parser "{parser.name}" failed on {location}: {e}')
                errors.append(f"{parser.name} parser failed on {location}: {e}")
                continue
            parsed.merge(parser_parsed)

        return errors


def find_certificates(
    image_tar: BinaryIO,
    cancel_event: Optional[Event] = None,
    parsers: Optional[Sequence[CertificateParserInterface]] = None,
    scratch_dir: Optional[Union[str, Path]] = None,
) -> ParsedCertificates:
    return CertificateScanner(parsers, scratch_dir).find_certificates(image_tar, cancel_event)
