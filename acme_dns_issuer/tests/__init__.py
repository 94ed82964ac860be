"""Unit tests and testing tools for the acme_dns_issuer package."""

BASE_DOMAIN = "example.test"
TEST_DOMAINS = [BASE_DOMAIN, f"*.{BASE_DOMAIN}"]
TEST_EMAIL = f"acme-dns-issuer@{BASE_DOMAIN}"
TEST_DIRECTORY = "https://acme.example.test/directory"
