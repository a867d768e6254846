"""Check-in credential issuance (QR token + OTP)."""

import base64
import io
import secrets
from typing import NamedTuple

import qrcode
from qrcode.constants import ERROR_CORRECT_H

from evreserve.errors import CredentialGenerationFailedError
from evreserve.logging import get_logger
from evreserve.storage.repository_base import ReservationRepository

logger = get_logger(__name__)


class Credentials(NamedTuple):
    """QR token and OTP pair for one reservation."""

    qr_token: str
    otp: str


def generate_qr_token() -> str:
    """Opaque 32-char hex token, 128 bits of entropy."""
    return secrets.token_hex(16)


def generate_otp(length: int = 6) -> str:
    """Uniform random numeric code of fixed length (leading zeros allowed)."""
    return "".join(secrets.choice("0123456789") for _ in range(length))


def render_qr_data_url(token: str, box_size: int = 10) -> str:
    """Render the token as a scannable PNG data URL."""
    qr = qrcode.QRCode(error_correction=ERROR_CORRECT_H, box_size=box_size, border=4)
    qr.add_data(token)
    qr.make(fit=True)
    img = qr.make_image()
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode("utf-8")


class CredentialIssuer:
    """Issues write-once credentials for new reservations."""

    def __init__(
        self,
        reservation_repo: ReservationRepository,
        otp_length: int = 6,
        max_attempts: int = 5,
    ):
        """
        Initialize credential issuer.

        Args:
            reservation_repo: Store used to check QR token uniqueness
            otp_length: Number of digits in the OTP
            max_attempts: QR regeneration budget before giving up
        """
        self.reservation_repo = reservation_repo
        self.otp_length = otp_length
        self.max_attempts = max_attempts

    async def issue(self) -> Credentials:
        """
        Generate a QR token not yet used by any reservation, plus an OTP.

        Raises:
            CredentialGenerationFailedError: every attempt collided
        """
        for attempt in range(1, self.max_attempts + 1):
            token = generate_qr_token()
            if not await self.reservation_repo.qr_code_exists(token):
                return Credentials(qr_token=token, otp=generate_otp(self.otp_length))

            logger.warning("qr_code_collision", attempt=attempt)

        logger.error("credential_generation_failed", attempts=self.max_attempts)
        raise CredentialGenerationFailedError(self.max_attempts)
