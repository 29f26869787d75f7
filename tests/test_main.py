from pathlib import Path

import pytest
import yaml
from cryptography import x509

import main
from image_trust_audit.found_certificate import FoundCertificate


@pytest.fixture
def image_tar_path(tmp_path, make_image_tar, root_certificate, other_root_certificate, certificate_as_pem) -> Path:
    # An image with the same root at two locations, and another root
    image_tar = make_image_tar(
        {
            "etc/ssl/certs/ca-certificates.crt": certificate_as_pem(root_certificate)
            + certificate_as_pem(other_root_certificate),
            "usr/local/share/ca-certificates/root.crt": certificate_as_pem(root_certificate),
            "bin/sh": b"\x7fELF",
        }
    )
    tar_path = tmp_path / "image.tar"
    tar_path.write_bytes(image_tar.getvalue())
    return tar_path


def _write_policy(tmp_path: Path, policy: dict) -> Path:
    config_path = tmp_path / "policy.yaml"
    config_path.write_text(yaml.safe_dump(policy))
    return config_path


def _sha256(certificate: x509.Certificate) -> str:
    return FoundCertificate.from_certificate("/", "pem", certificate).hex_fingerprint_sha256


class TestValidateCommand:
    def test_pass(self, tmp_path, image_tar_path, root_certificate, other_root_certificate, capsys):
        # Given a policy allowing both roots of the image
        config_path = _write_policy(
            tmp_path,
            {
                "version": "1",
                "allow": [
                    {"fingerprints": {"sha256": _sha256(root_certificate)}},
                    {"fingerprints": {"sha256": _sha256(other_root_certificate)}},
                ],
            },
        )

        # When validating the image
        exit_code = main.main(["validate", str(image_tar_path), "--config", str(config_path)])

        # It passes
        assert exit_code == main.EXIT_PASS
        output = capsys.readouterr().out
        assert "2 allowed, 0 forbidden, and 0 required certificates, in strict mode" in output
        assert "Scanned 3 certificates: all checks passed" in output

    def test_not_allowed(self, tmp_path, image_tar_path, root_certificate, capsys):
        # Given a policy allowing only one of the two roots
        config_path = _write_policy(tmp_path, {"allow": [{"fingerprints": {"sha256": _sha256(root_certificate)}}]})

        # When validating the image, it fails
        exit_code = main.main(["validate", str(image_tar_path), "--config", str(config_path)])
        assert exit_code == main.EXIT_POLICY_FAILURE

        # And the other root is reported
        output = capsys.readouterr().out
        assert "Certificate Other Root CA" in output
        assert "in /etc/ssl/certs/ca-certificates.crt is not allowed" in output
        assert "Validation failed" in output

    def test_quiet(self, tmp_path, image_tar_path):
        config_path = _write_policy(tmp_path, {"version": "1"})
        exit_code = main.main(["validate", str(image_tar_path), "--config", str(config_path), "--quiet"])
        assert exit_code == main.EXIT_PASS

    def test_permissive(self, tmp_path, image_tar_path, root_certificate, other_root_certificate, capsys):
        # Given a policy that forbids one root and requires the other
        config_path = _write_policy(
            tmp_path,
            {
                "forbid": [{"fingerprints": {"sha256": _sha256(root_certificate)}, "comment": "Compromised CA"}],
                "require": [{"fingerprints": {"sha256": _sha256(other_root_certificate)}}],
            },
        )

        # When validating in permissive mode, the forbidden root fails the validation at both of its locations
        exit_code = main.main(["validate", str(image_tar_path), "--config", str(config_path), "--permissive"])
        assert exit_code == main.EXIT_POLICY_FAILURE
        output = capsys.readouterr().out
        assert "in permissive mode" in output
        assert output.count("is forbidden") == 2
        assert "matched forbid list entry: Compromised CA (SHA256" in output
        assert "is not allowed" not in output
        assert "is absent" not in output

    def test_required_but_absent(self, tmp_path, image_tar_path, capsys):
        config_path = _write_policy(tmp_path, {"require": [{"fingerprints": {"sha1": "ab" * 20}, "comment": "Gone"}]})
        exit_code = main.main(["validate", str(image_tar_path), "--config", str(config_path), "--permissive"])
        assert exit_code == main.EXIT_POLICY_FAILURE
        assert f"Required certificate Gone (SHA1 {'ab' * 20}) is absent" in capsys.readouterr().out

    def test_file_uri(self, tmp_path, image_tar_path):
        config_path = _write_policy(tmp_path, {})
        exit_code = main.main(["validate", f"file://{image_tar_path}", "--config", str(config_path), "--permissive"])
        assert exit_code == main.EXIT_PASS

    def test_invalid_policy(self, tmp_path, image_tar_path):
        config_path = _write_policy(tmp_path, {"version": "2"})
        exit_code = main.main(["validate", str(image_tar_path), "--config", str(config_path)])
        assert exit_code == main.EXIT_ERROR

    def test_missing_policy(self, tmp_path, image_tar_path):
        exit_code = main.main(["validate", str(image_tar_path), "--config", str(tmp_path / "missing.yaml")])
        assert exit_code == main.EXIT_ERROR

    def test_corrupt_image(self, tmp_path):
        config_path = _write_policy(tmp_path, {})
        tar_path = tmp_path / "corrupt.tar"
        tar_path.write_bytes(b"this is not a tar archive" * 100)

        exit_code = main.main(["validate", str(tar_path), "--config", str(config_path)])
        assert exit_code == main.EXIT_ERROR


class TestInspectCommand:
    def test_inspect(self, image_tar_path, capsys):
        exit_code = main.main(["inspect", str(image_tar_path)])

        assert exit_code == main.EXIT_PASS
        output = capsys.readouterr().out
        assert "/usr/local/share/ca-certificates/root.crt\tpem\t" in output
        assert "Found 3 certificates and 0 partial certificates" in output


class TestExportCommand:
    def test_export(self, tmp_path, image_tar_path, root_certificate, other_root_certificate):
        # When exporting the certificates of the image
        out_path = tmp_path / "exported.pem"
        exit_code = main.main(["export", str(image_tar_path), "--out", str(out_path)])

        # Each root is written once
        assert exit_code == main.EXIT_PASS
        exported_certificates = x509.load_pem_x509_certificates(out_path.read_bytes())
        assert exported_certificates == [root_certificate, other_root_certificate]


class TestGenerateCommand:
    def test_generated_policy_validates_the_image(self, tmp_path, image_tar_path):
        # Given a policy generated from the image
        config_path = tmp_path / "generated.yaml"
        assert main.main(["generate", str(image_tar_path), "--out", str(config_path)]) == main.EXIT_PASS

        # It allows each root once
        generated_policy = yaml.safe_load(config_path.read_text())
        assert generated_policy["version"] == "1"
        assert [entry["comment"] for entry in generated_policy["allow"]] == ["Test Root CA", "Other Root CA"]

        # And the image passes strict validation against it
        assert main.main(["validate", str(image_tar_path), "--config", str(config_path)]) == main.EXIT_PASS
