"""Address verification services."""

from shipdesk.services.address.smarty import SmartyClient, SmartyError
from shipdesk.services.address.verify import (
    AddressVerifier,
    build_address_verifier,
)

__all__ = [
    "SmartyClient",
    "SmartyError",
    "AddressVerifier",
    "build_address_verifier",
]
