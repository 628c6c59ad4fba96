"""Tests for the read-only certificate and parameter lookups."""

import pytest

from effortless_deploy.exceptions import CertificateNotFoundError
from effortless_deploy.infra.certificates import CertificateFinder, covers
from effortless_deploy.infra.parameters import ParameterChecker
from tests.fixtures.fakes import FakeService

CERT_ARN = "arn:aws:acm:us-east-1:123456789012:certificate/abc"


class TestCovers:
    """Test certificate name matching."""

    @pytest.mark.parametrize(
        "names,domain,expected",
        [
            (["example.com"], "example.com", True),
            (["*.example.com"], "www.example.com", True),
            (["*.example.com"], "example.com", False),
            (["*.example.com"], "a.b.example.com", False),
            (["WWW.Example.com"], "www.example.com", True),
            (["other.com"], "www.example.com", False),
        ],
    )
    def test_covers(self, names, domain, expected) -> None:
        assert covers(names, domain) is expected


class TestCertificateFinder:
    """Test CertificateFinder.find."""

    async def test_finds_by_alternative_name(self) -> None:
        acm = FakeService("acm")
        acm.script(
            "list_certificates",
            {
                "CertificateSummaryList": [
                    {
                        "CertificateArn": CERT_ARN,
                        "DomainName": "example.com",
                        "SubjectAlternativeNameSummaries": ["example.com", "*.example.com"],
                    }
                ]
            },
        )

        assert await CertificateFinder(acm).find("www.example.com") == CERT_ARN
        assert acm.params("list_certificates")[0]["CertificateStatuses"] == ["ISSUED"]

    async def test_falls_back_to_domain_name(self) -> None:
        acm = FakeService("acm")
        acm.script(
            "list_certificates",
            {"CertificateSummaryList": [{"CertificateArn": CERT_ARN, "DomainName": "example.com"}]},
        )

        assert await CertificateFinder(acm).find("example.com") == CERT_ARN

    async def test_not_found(self) -> None:
        acm = FakeService("acm")
        acm.script("list_certificates", {"CertificateSummaryList": []})

        with pytest.raises(CertificateNotFoundError) as exc_info:
            await CertificateFinder(acm).find("www.example.com")

        assert exc_info.value.domain == "www.example.com"


class TestParameterChecker:
    """Test ParameterChecker.missing."""

    async def test_reports_invalid_parameters(self) -> None:
        ssm = FakeService("ssm")
        ssm.script("get_parameters", {"InvalidParameters": ["/shop/dev/b"]})

        missing = await ParameterChecker(ssm).missing(["/shop/dev/b", "/shop/dev/a"])

        assert missing == ["/shop/dev/b"]

    async def test_batches_of_ten(self) -> None:
        ssm = FakeService("ssm")
        ssm.script(
            "get_parameters",
            lambda Names: {"InvalidParameters": [n for n in Names if n.endswith("7")]},
        )
        paths = [f"/shop/dev/p{i:02d}" for i in range(25)]

        missing = await ParameterChecker(ssm).missing(paths + paths[:3])

        assert [len(p["Names"]) for p in ssm.params("get_parameters")] == [10, 10, 5]
        assert missing == ["/shop/dev/p07", "/shop/dev/p17"]

    async def test_nothing_to_check(self) -> None:
        ssm = FakeService("ssm")

        assert await ParameterChecker(ssm).missing([]) == []
        assert ssm.calls == []
