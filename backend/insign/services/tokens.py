import secrets

from insign.core.config import settings
from insign.core.errors import AuthError
from insign.models.signature import Participant
from insign.repositories.signature_request import SignatureRequestRepository

INVALID_TOKEN_MESSAGE = "Invalid access token"

_MAX_ISSUE_ATTEMPTS = 5


class AccessTokenGateway:
    """Issues and resolves the opaque per-participant signing credentials.

    Tokens carry no expiry of their own; whether one still grants access is
    decided from the live participant and request state.
    """

    def __init__(
        self,
        repository: SignatureRequestRepository,
        token_bytes: int | None = None,
        public_app_url: str | None = None,
    ) -> None:
        self.repository = repository
        self.token_bytes = token_bytes or settings.access_token_bytes
        base_url = public_app_url if public_app_url is not None else settings.resolved_public_app_url()
        self.public_app_url = base_url.strip().rstrip("/")

    def issue(self, participant: Participant) -> str:
        if participant.access_token:
            return participant.access_token
        for _ in range(_MAX_ISSUE_ATTEMPTS):
            token = secrets.token_urlsafe(self.token_bytes)
            if not self.repository.token_exists(token):
                participant.access_token = token
                self.repository.save(participant)
                return token
        raise RuntimeError("Could not generate a unique access token")

    def resolve(self, token: str | None) -> Participant:
        candidate = (token or "").strip()
        if not candidate:
            raise AuthError(INVALID_TOKEN_MESSAGE)
        participant = self.repository.get_participant_by_token(candidate)
        if participant is None:
            raise AuthError(INVALID_TOKEN_MESSAGE)
        return participant

    def signing_url(self, token: str) -> str:
        return f"{self.public_app_url}/sign/{token}"
