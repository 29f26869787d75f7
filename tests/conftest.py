import datetime
import io
import tarfile
from typing import Callable, Dict, Optional

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.serialization import Encoding
from cryptography.x509 import Certificate, NameOID


def _create_self_signed_certificate(common_name: str) -> Certificate:
    private_key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    now = datetime.datetime.now(datetime.timezone.utc)
    return (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(private_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=365))
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .sign(private_key, hashes.SHA256())
    )


@pytest.fixture
def make_certificate() -> Callable[[str], Certificate]:
    return _create_self_signed_certificate


@pytest.fixture(scope="session")
def root_certificate() -> Certificate:
    return _create_self_signed_certificate("Test Root CA")


@pytest.fixture(scope="session")
def other_root_certificate() -> Certificate:
    return _create_self_signed_certificate("Other Root CA")


@pytest.fixture
def certificate_as_pem() -> Callable[[Certificate], bytes]:
    def _to_pem(certificate: Certificate) -> bytes:
        return certificate.public_bytes(Encoding.PEM)

    return _to_pem


def _build_image_tar(files: Dict[str, bytes], symlinks: Optional[Dict[str, str]] = None) -> io.BytesIO:
    """Build an uncompressed TAR archive in memory, the way "docker export" lays out an image.
    """
    tar_content = io.BytesIO()
    with tarfile.open(fileobj=tar_content, mode="w") as tar_file:
        directories = sorted({name.rsplit("/", 1)[0] for name in files if "/" in name})
        for directory in directories:
            directory_info = tarfile.TarInfo(directory)
            directory_info.type = tarfile.DIRTYPE
            tar_file.addfile(directory_info)

        for name, content in files.items():
            file_info = tarfile.TarInfo(name)
            file_info.size = len(content)
            tar_file.addfile(file_info, io.BytesIO(content))

        for name, target in (symlinks or {}).items():
            link_info = tarfile.TarInfo(name)
            link_info.type = tarfile.SYMTYPE
            link_info.linkname = target
            tar_file.addfile(link_info)

    tar_content.seek(0)
    return tar_content


@pytest.fixture
def make_image_tar() -> Callable[..., io.BytesIO]:
    return _build_image_tar
