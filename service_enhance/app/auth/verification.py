"""
Verification-gated token issuance.

Unverified -> (proof submitted) -> ProofAccepted | ProofRejected. Only an
accepted proof produces a session token.
"""

from typing import Optional

from shared.errors import BadRequestError, ServerMisconfiguredError, UnauthorizedError
from shared.logging import get_logger
from shared.metrics import MetricsCollector

from ..adapters.turnstile_client import TurnstileClient
from .tokens import SessionToken, TokenIssuer


class VerificationService:
    """Exchanges a human-verification proof for a session token."""

    def __init__(
        self,
        turnstile_client: TurnstileClient,
        issuer: TokenIssuer,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.turnstile_client = turnstile_client
        self.issuer = issuer
        self.metrics = metrics
        self.logger = get_logger("gateway.auth.verification")

    async def exchange(self, proof: Optional[str], client_ip: str) -> SessionToken:
        if not isinstance(proof, str) or not proof.strip():
            self._record("missing_proof")
            raise BadRequestError("Missing verification token")

        if not self.issuer.secret or not self.turnstile_client.secret_key:
            self._record("misconfigured")
            self.logger.error("Token issuance is not configured")
            raise ServerMisconfiguredError()

        result = await self.turnstile_client.verify(proof.strip(), client_ip)
        if not result.success:
            self._record("rejected")
            raise UnauthorizedError(
                "Verification failed",
                details={"error_codes": result.error_codes},
            )

        session = self.issuer.issue()
        self._record("issued")
        self.logger.info("Session token issued", expires_at=session.expires_at)
        return session

    def _record(self, result: str) -> None:
        if self.metrics:
            self.metrics.record_token_issuance(result)
