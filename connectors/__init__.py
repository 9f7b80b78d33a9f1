"""Connector utilities for reaching external network services."""

from .network_diagnostics import (
    ConnectionTestResult,
    DnsResult,
    NetworkDiagnosis,
    check_dns_resolution,
    diagnose_network_issues,
    test_connection,
)

__all__ = [
    "ConnectionTestResult",
    "DnsResult",
    "NetworkDiagnosis",
    "check_dns_resolution",
    "diagnose_network_issues",
    "test_connection",
]
