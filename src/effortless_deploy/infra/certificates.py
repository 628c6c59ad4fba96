"""Certificate lookup for custom CDN domains."""

import logging
from collections.abc import Iterable

from ..clients import Capability, paginate
from ..exceptions import CertificateNotFoundError

logger = logging.getLogger(__name__)


def covers(names: Iterable[str], domain: str) -> bool:
    """True if any certificate name is the domain itself or its wildcard parent."""
    domain = domain.lower()
    parent = domain.split(".", 1)[1] if "." in domain else None
    for name in names:
        name = name.lower()
        if name == domain:
            return True
        if parent and name == f"*.{parent}":
            return True
    return False


class CertificateFinder:
    """Read-only lookup of issued certificates."""

    def __init__(self, acm: Capability, region: str = "us-east-1") -> None:
        self._acm = acm
        self.region = region

    async def find(self, domain: str) -> str:
        """
        Find an issued certificate covering ``domain``.

        The subject-alternative-name list is used when the certificate has
        one; otherwise only its primary domain name is considered.

        Returns:
            Certificate ARN

        Raises:
            CertificateNotFoundError: If no issued certificate covers the domain
        """
        async for certificate in paginate(
            self._acm,
            "list_certificates",
            "CertificateSummaryList",
            CertificateStatuses=["ISSUED"],
        ):
            names = certificate.get("SubjectAlternativeNameSummaries") or [
                certificate["DomainName"]
            ]
            if covers(names, domain):
                logger.debug("Using certificate %s for %s", certificate["CertificateArn"], domain)
                return certificate["CertificateArn"]

        raise CertificateNotFoundError(domain, self.region)
