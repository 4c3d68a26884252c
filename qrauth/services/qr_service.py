import base64
import io
from urllib.parse import parse_qs, urlencode, urlsplit
import qrcode
from qrauth.core.config import settings


class QRService:
    @staticmethod
    def build_payload(session_id: str, challenge: str, server: str) -> str:
        """
        Builds the deep link the mobile app scans:
        <scheme>://auth?session=...&challenge=...&server=...
        """
        query = urlencode({"session": session_id, "challenge": challenge, "server": server})
        return f"{settings.QR_SCHEME}://auth?{query}"

    @staticmethod
    def parse_payload(payload: str) -> dict | None:
        """
        Parses a scanned deep link back into session/challenge/server
        Returns None if the payload does not belong to this protocol
        """
        parts = urlsplit(payload)
        if parts.scheme != settings.QR_SCHEME or parts.netloc != "auth":
            return None
        query = parse_qs(parts.query)
        try:
            return {key: query[key][0] for key in ("session", "challenge", "server")}
        except KeyError:
            return None

    @staticmethod
    def _make_qr(data_str: str) -> qrcode.QRCode:
        qr = qrcode.QRCode(
            version=None,
            error_correction=qrcode.constants.ERROR_CORRECT_H,
            box_size=10,
            border=4,
        )
        qr.add_data(data_str)
        qr.make(fit=True)
        return qr

    @staticmethod
    def create_qr_image(data_str: str) -> str:
        """
        Creates a QR code image and returns it as a base64 string
        """
        img = QRService._make_qr(data_str).make_image(fill_color="black", back_color="white")

        buffered = io.BytesIO()
        img.save(buffered, format="PNG")
        img_str = base64.b64encode(buffered.getvalue()).decode()
        return img_str

    @staticmethod
    def render_terminal(data_str: str, out=None) -> None:
        QRService._make_qr(data_str).print_ascii(out=out, invert=True)
