from crm_mirror.db.models.tenant import Tenant
from crm_mirror.db.models.user import User, Role
from crm_mirror.db.models.pipeline_stage import PipelineStage
from crm_mirror.db.models.contact import Contact
from crm_mirror.db.models.conversation import Conversation, ConversationStatus
from crm_mirror.db.models.timeline_event import TimelineEvent, TimelineKind
from crm_mirror.db.models.api_key import ApiKey
from crm_mirror.db.models.webhook_event import WebhookEvent, WebhookEventStatus

__all__ = [
    "Tenant",
    "User",
    "Role",
    "PipelineStage",
    "Contact",
    "Conversation",
    "ConversationStatus",
    "TimelineEvent",
    "TimelineKind",
    "ApiKey",
    "WebhookEvent",
    "WebhookEventStatus",
]
