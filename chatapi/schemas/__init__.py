from .chat import (
    ChatMessageResponse,
    SendMessageRequest,
    SessionCreateRequest,
    SessionDetailResponse,
    SessionRenameRequest,
    SessionSummaryResponse,
)
from .deployment import (
    ActiveDeploymentResponse,
    DeploymentCreateRequest,
    DeploymentResponse,
    DeploymentTestResponse,
    DeploymentUpdateRequest,
)

__all__ = [
    "ActiveDeploymentResponse",
    "ChatMessageResponse",
    "DeploymentCreateRequest",
    "DeploymentResponse",
    "DeploymentTestResponse",
    "DeploymentUpdateRequest",
    "SendMessageRequest",
    "SessionCreateRequest",
    "SessionDetailResponse",
    "SessionRenameRequest",
    "SessionSummaryResponse",
]
