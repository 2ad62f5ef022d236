"""
UMS Frame Builder

Side-effect-free constructors for every request frame the engine sends.
One FrameBuilder is created per engine and injected into the components
that publish frames, so tests can inspect or replace it freely.
"""

from typing import Any
from uuid import uuid4

from ums_client.protocol.frames import (
    CONSUMER_MESSAGE_PREFIX,
    SECURE_FORM_SUBMIT_PREFIX,
    ContentType,
    EventKind,
    MessageStatus,
    RequestFrame,
    RequestId,
    Stage,
    UmsType,
)


DEFAULT_FEATURES = [
    "AUTO_MESSAGES",
    "RICH_CONTENT",
    "CO_BROWSE",
    "PHOTO_SHARING",
    "QUICK_REPLIES",
    "MULTI_DIALOG",
    "FILE_SHARING",
    "MARKDOWN_HYPERLINKS",
]

SUBSCRIBED_STATES = [Stage.OPEN.value, Stage.CLOSE.value, Stage.LOCKED.value]


def _numeric(request_id: RequestId) -> int:
    return int(request_id.value)


class FrameBuilder:
    """
    Builds request frames for the consumer socket.

    Attributes:
        app_id: Client application id reported at init
        integration: Integration name reported at init
        integration_version: Integration version reported at init
        time_zone: Time zone reported at init
        features: Capability flags reported at init
        user_agent: Operating system / user agent string reported at init
    """

    def __init__(
        self,
        app_id: str = "webAsync",
        integration: str = "WEB_SDK",
        integration_version: str = "3.0.62",
        time_zone: str = "UTC",
        features: list[str] | None = None,
        user_agent: str = "python-ums-client",
    ):
        self.app_id = app_id
        self.integration = integration
        self.integration_version = integration_version
        self.time_zone = time_zone
        self.features = list(features or DEFAULT_FEATURES)
        self.user_agent = user_agent

    # =========================================================================
    # Connection
    # =========================================================================

    def create_init_connection(self, jwt: str) -> RequestFrame:
        """
        Create the init frame that authenticates the socket.

        The credential travels in a ConsumerAuthentication header alongside
        the client's capability properties.
        """
        return RequestFrame(
            id=_numeric(RequestId.INIT_CONNECTION),
            type=UmsType.INIT_CONNECTION.value,
            body={},
            headers=[
                {
                    "type": ".ams.headers.ConsumerAuthentication",
                    "jwt": jwt,
                },
                {
                    "type": ".ams.headers.ClientProperties",
                    "os": self.user_agent,
                    "features": self.features,
                    "appId": self.app_id,
                    "integrationVersion": self.integration_version,
                    "integration": self.integration,
                    "timeZone": self.time_zone,
                },
            ],
        )

    def create_get_clock(self) -> RequestFrame:
        """Heartbeat frame."""
        return RequestFrame(id=_numeric(RequestId.GET_CLOCK), type=UmsType.GET_CLOCK.value)

    def create_get_user_profile(self) -> RequestFrame:
        return RequestFrame(
            id=_numeric(RequestId.GET_USER_PROFILE),
            type=UmsType.GET_USER_PROFILE.value,
        )

    def create_set_user_profile(self, first_name: str, last_name: str) -> RequestFrame:
        """Attach the consumer's personal details to the authenticated profile."""
        return RequestFrame(
            id=_numeric(RequestId.SET_USER_PROFILE),
            type=UmsType.SET_USER_PROFILE.value,
            body={
                "authenticatedData": {
                    "lp_sdes": [
                        {
                            "type": "personal",
                            "personal": {
                                "firstname": first_name,
                                "lastname": last_name,
                            },
                        }
                    ]
                }
            },
        )

    # =========================================================================
    # Subscriptions
    # =========================================================================

    def create_subscribe_ex_conversations(self, conversation_id: str | None = None) -> RequestFrame:
        """
        Subscribe to the consumer's conversations.

        Args:
            conversation_id: Scope the subscription to one known conversation
        """
        body: dict[str, Any] = {
            "stage": list(SUBSCRIBED_STATES),
            "convState": list(SUBSCRIBED_STATES),
        }
        if conversation_id:
            body["conversationId"] = conversation_id
        return RequestFrame(
            id=_numeric(RequestId.SUBSCRIBE_EX_CONVERSATIONS),
            type=UmsType.SUBSCRIBE_EX_CONVERSATIONS.value,
            body=body,
        )

    def create_subscribe_survey_events(self, conversation_id: str, dialog_id: str | None) -> RequestFrame:
        return RequestFrame(
            id=_numeric(RequestId.SUBSCRIBE_EX_CONVERSATIONS_SURVEYS),
            type=UmsType.SUBSCRIBE_EX_CONVERSATIONS.value,
            body={
                "conversationId": conversation_id,
                "dialogId": dialog_id or conversation_id,
            },
        )

    def create_subscribe_messaging_events(self, conversation_id: str, dialog_id: str) -> RequestFrame:
        return RequestFrame(
            id=_numeric(RequestId.SUBSCRIBE_MESSAGING_EVENTS),
            type=UmsType.SUBSCRIBE_MESSAGING_EVENTS.value,
            body={
                "fromSeq": 0,
                "conversationId": conversation_id,
                "dialogId": dialog_id,
            },
        )

    # =========================================================================
    # Conversation Lifecycle
    # =========================================================================

    def create_request_conversation(
        self,
        skill_id: str,
        visitor_id: str,
        session_id: str,
        campaign_id: str | None = None,
        engagement_id: str | None = None,
        lang: str = "en-US",
    ) -> RequestFrame:
        """
        Request a new messaging conversation routed to a skill.

        Campaign info is only attached when both campaign and engagement are known.
        """
        body: dict[str, Any] = {
            "skillId": skill_id,
            "channelType": "MESSAGING",
            "ttrDefName": None,
            "conversationContext": {
                "visitorId": visitor_id,
                "sessionId": session_id,
                "interactionContextId": "1",
                "type": "SharkContext",
                "lang": lang,
            },
        }
        if campaign_id and engagement_id:
            body["campaignInfo"] = {
                "campaignId": campaign_id,
                "engagementId": engagement_id,
            }
        return RequestFrame(
            id=_numeric(RequestId.REQUEST_CONVERSATION),
            type=UmsType.REQUEST_CONVERSATION.value,
            body=body,
        )

    def create_close_conversation(self, conversation_id: str) -> RequestFrame:
        return RequestFrame(
            id=_numeric(RequestId.CLOSE_CONVERSATION),
            type=UmsType.UPDATE_CONVERSATION_FIELD.value,
            body={
                "conversationId": conversation_id,
                "conversationField": {
                    "field": "Stage",
                    "conversationState": Stage.CLOSE.value,
                },
            },
        )

    def create_close_dialog(self, conversation_id: str, dialog_id: str) -> RequestFrame:
        return RequestFrame(
            id=_numeric(RequestId.CLOSE_DIALOG),
            type=UmsType.UPDATE_CONVERSATION_FIELD.value,
            body={
                "conversationId": conversation_id,
                "conversationField": {
                    "field": "DialogChange",
                    "type": "UPDATE",
                    "dialog": {
                        "dialogId": dialog_id,
                        "state": Stage.CLOSE.value,
                        "closedCause": "Closed by consumer",
                    },
                },
            },
        )

    # =========================================================================
    # Publishing
    # =========================================================================

    def create_text_message(self, conversation_id: str, dialog_id: str, text: str) -> RequestFrame:
        """Publish a plain text message; each gets a fresh consumer_ id."""
        return RequestFrame(
            id=f"{CONSUMER_MESSAGE_PREFIX}{uuid4()}",
            type=UmsType.PUBLISH_EVENT.value,
            body={
                "conversationId": conversation_id,
                "dialogId": dialog_id,
                "event": {
                    "type": EventKind.CONTENT.value,
                    "contentType": ContentType.TEXT.value,
                    "message": text,
                },
            },
        )

    def create_read_receipt(self, dialog_id: str, sequence_list: list[int]) -> RequestFrame:
        return RequestFrame(
            id=_numeric(RequestId.SUBSCRIBE_MESSAGING_EVENTS),
            type=UmsType.PUBLISH_EVENT.value,
            body={
                "dialogId": dialog_id,
                "event": {
                    "type": EventKind.ACCEPT_STATUS.value,
                    "status": MessageStatus.READ.value,
                    "sequenceList": sequence_list,
                },
            },
        )

    # =========================================================================
    # Secure Forms
    # =========================================================================

    def create_secure_form_upload_token(self, form_id: str | None, invitation_id: str, dialog_id: str) -> RequestFrame:
        """Request one-time keys for a form; the response's reqId is the invitation id."""
        return RequestFrame(
            id=invitation_id,
            type=UmsType.GENERATE_UPLOAD_TOKEN.value,
            body={
                "uploadable": {
                    "formId": form_id,
                    "invitationId": invitation_id,
                    "type": "SecureForm",
                    "dialogId": dialog_id,
                }
            },
        )

    def create_secure_form_submit(
        self,
        dialog_id: str,
        conversation_id: str,
        submission_id: str,
        invitation_id: str,
    ) -> RequestFrame:
        return RequestFrame(
            id=f"{SECURE_FORM_SUBMIT_PREFIX}{invitation_id}",
            type=UmsType.PUBLISH_EVENT.value,
            body={
                "dialogId": dialog_id,
                "conversationId": conversation_id,
                "event": {
                    "type": EventKind.CONTENT.value,
                    "contentType": ContentType.SECURE_FORM_SUBMISSION.value,
                    "message": {
                        "submissionId": submission_id,
                        "invitationId": invitation_id,
                    },
                },
            },
        )

    # =========================================================================
    # File Sharing
    # =========================================================================

    def create_request_file_upload(self, file_size: int, file_type: str) -> RequestFrame:
        return RequestFrame(
            id=_numeric(RequestId.REQUEST_FILE_UPLOAD),
            type=UmsType.GENERATE_URL_FOR_UPLOAD_FILE.value,
            body={
                "fileSize": file_size,
                "fileType": file_type,
            },
        )

    def create_publish_file(
        self,
        caption: str,
        relative_path: str,
        file_type: str,
        preview: str | None,
        dialog_id: str,
        conversation_id: str,
    ) -> RequestFrame:
        return RequestFrame(
            id=_numeric(RequestId.PUBLISH_FILE),
            type=UmsType.PUBLISH_EVENT.value,
            body={
                "dialogId": dialog_id,
                "conversationId": conversation_id,
                "event": {
                    "type": EventKind.CONTENT.value,
                    "contentType": ContentType.HOSTED_FILE.value,
                    "message": {
                        "caption": caption,
                        "relativePath": relative_path,
                        "fileType": file_type,
                        "preview": preview,
                    },
                },
            },
        )
