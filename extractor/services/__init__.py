from extractor.services.billing_service import BillingAccountant
from extractor.services.extraction_service import ExtractionInvoker
from extractor.services.ghl_client import GHLAPIError, GHLClient
from extractor.services.pipeline_service import ExtractionPipeline, PipelineOutcome
from extractor.services.result import ErrorKind, Result
from extractor.services.token_service import CredentialCache, CRMCredential, TokenLifecycleManager

__all__ = [
    "BillingAccountant",
    "CredentialCache",
    "CRMCredential",
    "ErrorKind",
    "ExtractionInvoker",
    "ExtractionPipeline",
    "GHLAPIError",
    "GHLClient",
    "PipelineOutcome",
    "Result",
    "TokenLifecycleManager",
]
