"""Allows running the issuer with `python -m acme_dns_issuer`."""
import sys

from .cli import main

sys.exit(main())
