from typing import List

from cryptography.x509 import NameOID, Name, Certificate, ObjectIdentifier


class CertificateUtils:
    @staticmethod
    def _get_names_with_oid(name_field: Name, name_oid: ObjectIdentifier) -> List[str]:
        return [str(cn.value) for cn in name_field.get_attributes_for_oid(name_oid)]

    @classmethod
    def get_canonical_subject_name(cls, certificate: Certificate) -> str:
        """Compute the name used to refer to a certificate in reports and generated policies.

        Use the CN if there is one, then the OU, then the O; fall back to the whole RFC 4514 subject.
        """
        name_field = certificate.subject
        for name_oid in (NameOID.COMMON_NAME, NameOID.ORGANIZATIONAL_UNIT_NAME, NameOID.ORGANIZATION_NAME):
            names = cls._get_names_with_oid(name_field, name_oid)
            if names:
                # We don't support certs with multiple CNs
                return names[0].strip()

        return name_field.rfc4514_string().strip()
