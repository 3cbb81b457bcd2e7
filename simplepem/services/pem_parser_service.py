"""
PEM stream parser producing certificate chain and private key bundles.
"""
import base64
import binascii
import logging
import re
from datetime import datetime, timezone
from typing import BinaryIO, List, Optional, Union

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import dsa, ec, ed448, ed25519, rsa, x448, x25519

from ..models.bundle import PemBundle
from ..models.errors import ParseError


CERTIFICATE_LABELS = frozenset(["CERTIFICATE", "X509 CERTIFICATE"])

# PEM label -> encoding reported as the key format
KEY_FORMATS = {
    "PRIVATE KEY": "PKCS#8",
    "RSA PRIVATE KEY": "PKCS#1",
    "EC PRIVATE KEY": "SEC1",
    "DSA PRIVATE KEY": "DSA",
    "ENCRYPTED PRIVATE KEY": "PKCS#8 (encrypted)",
}

_KEY_ALGORITHMS = (
    (rsa.RSAPrivateKey, "RSA"),
    (ec.EllipticCurvePrivateKey, "EC"),
    (dsa.DSAPrivateKey, "DSA"),
    (ed25519.Ed25519PrivateKey, "Ed25519"),
    (ed448.Ed448PrivateKey, "Ed448"),
    (x25519.X25519PrivateKey, "X25519"),
    (x448.X448PrivateKey, "X448"),
)

_BEGIN_RE = re.compile(r'^-----BEGIN ([A-Z0-9 ]+)-----$')
_END_RE = re.compile(r'^-----END ([A-Z0-9 ]+)-----$')


def key_algorithm_name(key) -> str:
    """Get the algorithm name of a private key object."""
    for key_type, name in _KEY_ALGORITHMS:
        if isinstance(key, key_type):
            return name
    return type(key).__name__


class PemParserService:
    """Decodes concatenated PEM blocks into a ``PemBundle``."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def parse(self, source: Union[bytes, str, BinaryIO]) -> PemBundle:
        """
        Parse a stream of PEM blocks.

        Certificates are appended to the chain in stream order, so the first
        certificate becomes the leaf. The first private key block wins; later
        key blocks are skipped. A stream without any blocks yields an empty
        bundle.

        Args:
            source: PEM bytes, text, or a binary file object

        Returns:
            PemBundle stamped with the time parsing completed

        Raises:
            ParseError: If a block is malformed, has an unknown label, or
                holds a certificate/key that cannot be decoded
        """
        text = self._read_text(source)

        chain: List[x509.Certificate] = []
        key = None
        key_format = None
        key_algorithm = None

        for block_index, label, der in self._iter_blocks(text):
            if label in CERTIFICATE_LABELS:
                chain.append(self._load_certificate(block_index, label, der))
            elif label in KEY_FORMATS:
                if key is not None:
                    self.logger.debug(f"Ignoring additional private key in PEM block #{block_index}")
                    continue
                key = self._load_private_key(block_index, label, der)
                key_format = KEY_FORMATS[label]
                key_algorithm = key_algorithm_name(key)
            else:
                raise ParseError(block_index, f"unrecognized PEM label '{label}'", label)

        bundle = PemBundle(
            chain=tuple(chain),
            key=key,
            key_format=key_format,
            key_algorithm=key_algorithm,
            created_at=datetime.now(timezone.utc)
        )
        self.logger.debug(
            f"Parsed PEM stream: {len(chain)} certificate(s), "
            f"key={'yes' if key is not None else 'no'}"
        )
        return bundle

    def _read_text(self, source: Union[bytes, str, BinaryIO]) -> str:
        if hasattr(source, 'read'):
            source = source.read()
        if isinstance(source, str):
            return source
        # latin-1 maps every byte; non-ASCII inside a block fails base64 validation
        return bytes(source).decode('latin-1')

    def _iter_blocks(self, text: str):
        """Yield ``(block_index, label, der_bytes)`` for every PEM block in order."""
        block_index = 0
        label: Optional[str] = None
        body: List[str] = []

        for line in text.splitlines():
            line = line.strip()

            if label is None:
                begin = _BEGIN_RE.match(line)
                if begin:
                    label = begin.group(1)
                    body = []
                elif _END_RE.match(line):
                    raise ParseError(block_index, "END marker without matching BEGIN")
                # Anything else outside a block (comments, bag attributes) is skipped
                continue

            end = _END_RE.match(line)
            if end:
                if end.group(1) != label:
                    raise ParseError(
                        block_index,
                        f"END label '{end.group(1)}' does not match BEGIN label '{label}'",
                        label
                    )
                yield block_index, label, self._decode_body(block_index, label, body)
                block_index += 1
                label = None
                continue

            if _BEGIN_RE.match(line):
                raise ParseError(block_index, "BEGIN marker inside an unterminated block", label)
            body.append(line)

        if label is not None:
            raise ParseError(block_index, "missing END marker", label)

    def _decode_body(self, block_index: int, label: str, lines: List[str]) -> bytes:
        if any(':' in line for line in lines):
            # RFC 1421 headers only appear on encrypted traditional keys
            raise ParseError(block_index, "encrypted PEM blocks are not supported", label)

        payload = "".join(lines)
        if not payload:
            raise ParseError(block_index, "empty PEM payload", label)

        try:
            return base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ParseError(block_index, f"malformed base64 payload: {e}", label)

    def _load_certificate(self, block_index: int, label: str, der: bytes) -> x509.Certificate:
        try:
            return x509.load_der_x509_certificate(der)
        except ValueError as e:
            raise ParseError(block_index, f"invalid X.509 certificate: {e}", label)

    def _load_private_key(self, block_index: int, label: str, der: bytes):
        if label == "ENCRYPTED PRIVATE KEY":
            raise ParseError(block_index, "encrypted private keys are not supported", label)
        try:
            return serialization.load_der_private_key(der, password=None)
        except (ValueError, TypeError, UnsupportedAlgorithm) as e:
            raise ParseError(block_index, f"unsupported or invalid private key: {e}", label)


_default_parser = PemParserService()


def parse_pem_stream(source: Union[bytes, str, BinaryIO]) -> PemBundle:
    """Parse ``source`` with a shared parser instance."""
    return _default_parser.parse(source)

