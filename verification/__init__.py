from verification.api_client import DetailApiClient
from verification.batch import BatchVerificationProcessor
from verification.response_parser import ParseFailureReason, classify, parse_item_details
from verification.service import VerificationService

__all__ = [
    "BatchVerificationProcessor",
    "DetailApiClient",
    "ParseFailureReason",
    "VerificationService",
    "classify",
    "parse_item_details",
]
