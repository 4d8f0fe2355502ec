"""
Registry models: the check / publish / delete state machine and its
conclusion records.

The state machine itself lives in `models.model` (RegistryModel); this
package only re-exports the records, which contracts.py also depends on.
"""

from .shared import (
    TEMP,
    CheckConclusion,
    CheckFailure,
    CheckFailureReasonCode,
    CheckSkip,
    CheckSuccess,
    DeleteAccept,
    DeleteConclusion,
    DeleteFailureReasonCode,
    DeleteReject,
    FailureReason,
    PublishConclusion,
    PublishFailureReasonCode,
    PublishIgnore,
    PublishIgnoreReasonCode,
    PublishReject,
    PublishSuccess,
    SchemaCheckConclusion,
    SchemaDeleteConclusion,
    SchemaPublishConclusion,
    get_reason_by_code,
)

__all__ = [
    "TEMP",
    "CheckConclusion",
    "CheckFailure",
    "CheckFailureReasonCode",
    "CheckSkip",
    "CheckSuccess",
    "DeleteAccept",
    "DeleteConclusion",
    "DeleteFailureReasonCode",
    "DeleteReject",
    "FailureReason",
    "PublishConclusion",
    "PublishFailureReasonCode",
    "PublishIgnore",
    "PublishIgnoreReasonCode",
    "PublishReject",
    "PublishSuccess",
    "SchemaCheckConclusion",
    "SchemaDeleteConclusion",
    "SchemaPublishConclusion",
    "get_reason_by_code",
]
