from typing import Any, Dict, List, Mapping, Optional, Sequence, Type

from image_trust_audit.parser.der_parser import DerCertificateParser
from image_trust_audit.parser.jks_parser import JksCertificateParser
from image_trust_audit.parser.parser_interface import CertificateParserInterface, EntryOpener
from image_trust_audit.parser.pem_parser import PemCertificateParser


__all__ = [
    "CertificateParserInterface",
    "CertificateParserRegistry",
    "DEFAULT_PARSER_NAMES",
    "DerCertificateParser",
    "EntryOpener",
    "JksCertificateParser",
    "PemCertificateParser",
    "get_parsers",
]


DEFAULT_PARSER_NAMES = ("pem",)


class CertificateParserRegistry:
    """The parsers the scanner can run against each file of an image, by name.
    """

    def __init__(self) -> None:
        self._parser_cls: Dict[str, Type[CertificateParserInterface]] = {}

    def register(self, parser_cls: Type[CertificateParserInterface]) -> None:
        if parser_cls.name in self._parser_cls:
            raise ValueError(f'A parser named "{parser_cls.name}" is already registered')
        self._parser_cls[parser_cls.name] = parser_cls

    @property
    def names(self) -> List[str]:
        return sorted(self._parser_cls.keys())

    def create(self, name: str, **parser_options: Any) -> CertificateParserInterface:
        try:
            parser_cls = self._parser_cls[name]
        except KeyError:
            raise KeyError(f'Unknown parser "{name}"; supported parsers: {", ".join(self.names)}')
        return parser_cls(**parser_options)


registry = CertificateParserRegistry()
registry.register(PemCertificateParser)
registry.register(DerCertificateParser)
registry.register(JksCertificateParser)


def get_parsers(
    names: Sequence[str] = DEFAULT_PARSER_NAMES, parser_options: Optional[Mapping[str, Mapping[str, Any]]] = None
) -> List[CertificateParserInterface]:
    """Instantiate the parsers with the given names; parser_options maps a parser name to its constructor arguments.
    """
    parser_options = parser_options or {}
    return [registry.create(name, **parser_options.get(name, {})) for name in names]
