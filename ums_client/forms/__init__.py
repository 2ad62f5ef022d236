# Secure Forms
# Invitation, upload token and submission flow for agent-requested forms

from ums_client.forms.coordinator import (
    SecureFormCoordinator,
    FrameSender,
    SenderName,
    DEFAULT_TIMEOUT_MS,
    FORM_CSS,
    secure_form_url,
    submitted_text,
    invitation_text,
)

__all__ = [
    "SecureFormCoordinator",
    "FrameSender",
    "SenderName",
    "DEFAULT_TIMEOUT_MS",
    "FORM_CSS",
    "secure_form_url",
    "submitted_text",
    "invitation_text",
]
