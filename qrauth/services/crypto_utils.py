import base64
import binascii
import logging
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa
from jwcrypto import jwk

logger = logging.getLogger(__name__)


class CryptoUtils:
    @staticmethod
    def verify_raw_signature(jwk_dict: dict, data: str, signature_b64: str) -> bool:
        """
        Verifies a base64 raw signature over `data` with a public JWK.
        RSA keys use RS256 (default) or PS256 depending on the JWK "alg";
        EC keys expect a DER-encoded ECDSA/SHA-256 signature.
        """
        try:
            # Load key from JWK using jwcrypto to handle parsing
            key = jwk.JWK(**jwk_dict)
            public_key = key.get_op_key("verify")
            sig_bytes = base64.b64decode(signature_b64, validate=True)
        except (
            ValueError,
            TypeError,
            KeyError,
            binascii.Error,
            jwk.InvalidJWKValue,
            jwk.InvalidJWKType,
            jwk.InvalidJWKOperation,
        ) as e:
            logger.error(f"Signature verification input rejected: {type(e).__name__}: {e}")
            return False

        data_bytes = data.encode("utf-8")

        try:
            if isinstance(public_key, rsa.RSAPublicKey):
                alg = jwk_dict.get("alg")
                if alg == "RS256" or alg is None:
                    public_key.verify(sig_bytes, data_bytes, padding.PKCS1v15(), hashes.SHA256())
                elif alg == "PS256":
                    public_key.verify(
                        sig_bytes,
                        data_bytes,
                        padding.PSS(mgf=padding.MGF1(hashes.SHA256()), salt_length=padding.PSS.MAX_LENGTH),
                        hashes.SHA256(),
                    )
                else:
                    logger.error(f"Unsupported RSA alg: {alg}")
                    return False
                return True

            if isinstance(public_key, ec.EllipticCurvePublicKey):
                public_key.verify(sig_bytes, data_bytes, ec.ECDSA(hashes.SHA256()))
                return True
        except InvalidSignature:
            return False

        logger.error(f"Unsupported key type: {jwk_dict.get('kty')}")
        return False
