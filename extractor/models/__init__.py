from extractor.models.agency_openai_key import AgencyOpenAIKey
from extractor.models.contextual_rule import ContextualRule
from extractor.models.conversation_message import ConversationMessage
from extractor.models.extraction_field import ExtractionField
from extractor.models.location_config import LocationConfig
from extractor.models.model_pricing import ModelPricing
from extractor.models.stop_trigger import StopTrigger
from extractor.models.subscription import LocationSubscription, SubscriptionPlan
from extractor.models.usage_log import UsageLog
from extractor.models.usage_tracking import UsageTracking

__all__ = [
    "LocationConfig",
    "ConversationMessage",
    "ExtractionField",
    "ContextualRule",
    "StopTrigger",
    "UsageLog",
    "UsageTracking",
    "SubscriptionPlan",
    "LocationSubscription",
    "ModelPricing",
    "AgencyOpenAIKey",
]
