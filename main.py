import argparse
import logging
import sys
import tarfile
from pathlib import Path
from typing import List, Optional

import yaml
from cryptography.hazmat.primitives.serialization import Encoding

from image_trust_audit import __version__
from image_trust_audit.found_certificate import ParsedCertificates
from image_trust_audit.parser import DEFAULT_PARSER_NAMES, get_parsers, registry
from image_trust_audit.policy import DEFAULT_CONFIG_FILE_NAME, Config, ConfigurationError
from image_trust_audit.scanner import CertificateScanError, CertificateScanner
from image_trust_audit.validator import Validator


EXIT_PASS = 0
EXIT_POLICY_FAILURE = 1
EXIT_ERROR = 2


def _resolve_target(target: str) -> Path:
    # The GitHub Action passes the image as file://<path>
    if target.startswith("file://"):
        target = target[len("file://") :]
    return Path(target)


def _scan(args: argparse.Namespace) -> ParsedCertificates:
    parser_options = {"jks": {"store_passwords": args.jks_password}} if args.jks_password else None
    scanner = CertificateScanner(get_parsers(args.parser or DEFAULT_PARSER_NAMES, parser_options), args.scratch_dir)
    with open(_resolve_target(args.target_tar), mode="rb") as image_tar:
        return scanner.find_certificates(image_tar)


def validate(args: argparse.Namespace) -> int:
    """Validate the certificate authorities found in an image against a policy file.
    """
    config = Config.from_yaml(args.config)
    validator = Validator(config, permissive_mode=args.permissive)
    print(f"Validating against {validator.describe_config()}")

    parsed = _scan(args)
    result = validator.validate(parsed.found)

    for found in result.not_allowed_certificates:
        print(f"Certificate {found.subject_name} ({found.hex_fingerprint_sha256}) in {found.location} is not allowed")
    for forbidden in result.forbidden_certificates:
        found = forbidden.certificate
        print(f"Certificate {found.subject_name} ({found.hex_fingerprint_sha256}) in {found.location} is forbidden")
        print(f"    matched forbid list entry: {forbidden.entry.describe()}")
    for entry in result.required_but_absent:
        print(f"Required certificate {entry.describe()} is absent")

    if result.is_pass():
        print(f"Scanned {len(parsed.found)} certificates: all checks passed")
        return EXIT_PASS

    print("Validation failed")
    if args.quiet:
        return EXIT_PASS
    return EXIT_POLICY_FAILURE


def inspect(args: argparse.Namespace) -> int:
    """List the certificates found in an image.
    """
    parsed = _scan(args)
    for found in parsed.found:
        print(f"{found.location}\t{found.parser}\t{found.hex_fingerprint_sha256}\t{found.subject_name}")
    for partial in parsed.partials:
        print(f"{partial.location}\t{partial.parser}\tPARTIAL\t{partial.reason}")
    print(f"Found {len(parsed.found)} certificates and {len(parsed.partials)} partial certificates")
    return EXIT_PASS


def export(args: argparse.Namespace) -> int:
    """Export every certificate found in an image to a single PEM file.
    """
    parsed = _scan(args)
    exported_fingerprints = set()
    all_certs_as_pem = []
    for found in parsed.found:
        if found.certificate is None or found.fingerprint_sha256 in exported_fingerprints:
            continue
        exported_fingerprints.add(found.fingerprint_sha256)
        all_certs_as_pem.append(found.certificate.public_bytes(Encoding.PEM).decode("ascii"))

    with open(args.out, mode="w") as out_pem_file:
        out_pem_file.write("".join(all_certs_as_pem))
    print(f"Exported {len(all_certs_as_pem)} certificates to {args.out}")
    return EXIT_PASS


def generate(args: argparse.Namespace) -> int:
    """Write a policy file that allows exactly the certificate authorities found in an image.
    """
    parsed = _scan(args)
    config = Config.from_found_certificates(parsed.found)
    with open(args.out, mode="w") as config_file:
        yaml.dump(config, config_file, default_flow_style=False, sort_keys=False)
    print(f"Wrote a policy allowing {len(config.allow)} certificates to {args.out}")
    return EXIT_PASS


def _build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Find and validate the certificate authorities inside a container image."
    )
    parser.add_argument("--version", action="version", version=__version__)
    parser.add_argument("--log-level", default="WARNING", choices=["DEBUG", "INFO", "WARNING", "ERROR"])

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("target_tar", help="Uncompressed TAR export of the image, as a path or a file:// URI.")
    common.add_argument(
        "--parser",
        action="append",
        choices=registry.names,
        help=f"Certificate parser to run; can be repeated (default: {', '.join(DEFAULT_PARSER_NAMES)}).",
    )
    common.add_argument("--jks-password", action="append", help="Password to try for Java key stores.")
    common.add_argument("--scratch-dir", help="Directory for temporary copies of very large files.")

    subparsers = parser.add_subparsers(dest="command", required=True)

    validate_parser = subparsers.add_parser("validate", parents=[common], help=str(validate.__doc__))
    validate_parser.add_argument("--config", default=DEFAULT_CONFIG_FILE_NAME, help="Path to the policy file.")
    validate_parser.add_argument(
        "--permissive", action="store_true", help="Only enforce the forbid and require lists of the policy."
    )
    validate_parser.add_argument("--quiet", action="store_true", help="Do not fail when the validation fails.")
    validate_parser.set_defaults(func=validate)

    inspect_parser = subparsers.add_parser("inspect", parents=[common], help=str(inspect.__doc__))
    inspect_parser.set_defaults(func=inspect)

    export_parser = subparsers.add_parser("export", parents=[common], help=str(export.__doc__))
    export_parser.add_argument("--out", required=True, help="Path of the PEM file to write.")
    export_parser.set_defaults(func=export)

    generate_parser = subparsers.add_parser("generate", parents=[common], help=str(generate.__doc__))
    generate_parser.add_argument("--out", default=DEFAULT_CONFIG_FILE_NAME, help="Path of the policy file to write.")
    generate_parser.set_defaults(func=generate)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_arg_parser().parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format="%(levelname)s %(name)s: %(message)s")

    try:
        return args.func(args)
    except (ConfigurationError, CertificateScanError, tarfile.ReadError, OSError) as e:
        logging.error(str(e))
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
