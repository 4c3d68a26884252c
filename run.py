# Development launcher: serves qrauth on the LAN so a phone on the same
# network can reach the URL embedded in the QR code.

import datetime
import ipaddress
import os
import socket
from pathlib import Path

import uvicorn
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

CERT_DIR = Path(os.getenv("CERT_DIR", "certs"))


def get_lan_ip() -> str:
    # No packet is sent; connect() on UDP only picks the outgoing interface
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
        try:
            s.connect(("10.255.255.255", 1))
            return s.getsockname()[0]
        except OSError:
            return "127.0.0.1"


def ensure_dev_certificate(lan_ip: str) -> tuple[Path, Path]:
    """
    Self-signed certificate for localhost and the LAN address, reused
    across runs while the LAN address stays the same.
    """
    cert_path = CERT_DIR / f"dev-{lan_ip}.crt"
    key_path = CERT_DIR / f"dev-{lan_ip}.key"
    if cert_path.exists() and key_path.exists():
        return cert_path, key_path

    CERT_DIR.mkdir(parents=True, exist_ok=True)
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "qrauth dev")])
    now = datetime.datetime.now(datetime.timezone.utc)
    san = x509.SubjectAlternativeName([
        x509.DNSName("localhost"),
        x509.IPAddress(ipaddress.ip_address("127.0.0.1")),
        x509.IPAddress(ipaddress.ip_address(lan_ip)),
    ])
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(minutes=5))
        .not_valid_after(now + datetime.timedelta(days=30))
        .add_extension(san, critical=False)
        .sign(key, hashes.SHA256())
    )

    key_path.write_bytes(
        key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
    )
    os.chmod(key_path, 0o600)
    cert_path.write_bytes(cert.public_bytes(serialization.Encoding.PEM))
    print(f"Generated development certificate {cert_path}")
    return cert_path, key_path


def main():
    lan_ip = get_lan_ip()
    port = int(os.getenv("PORT", "8000"))
    use_tls = os.getenv("USE_TLS", "true").lower() in ("1", "true", "yes", "on")
    base_url = f"{'https' if use_tls else 'http'}://{lan_ip}:{port}"

    # The phone follows this address from the QR payload
    os.environ.setdefault("PUBLIC_BASE_URL", base_url)

    tls = {}
    if use_tls:
        cert_path, key_path = ensure_dev_certificate(lan_ip)
        tls = {"ssl_certfile": str(cert_path), "ssl_keyfile": str(key_path)}

    print(f"qrauth listening on {base_url}")
    print(f"  login page:  {base_url}/login")
    print(f"  QR server:   {os.environ['PUBLIC_BASE_URL']}")
    if use_tls:
        print("  the certificate is self-signed; accept it once in the browser and on the phone")

    uvicorn.run("qrauth.main:app", host="0.0.0.0", port=port, reload=True, **tls)


if __name__ == "__main__":
    main()
