"""
Format des QR codes élèves et génération de l'image PNG.

Format : {QR_TOKEN_PREFIX}{NUMERO_ADMISSION} en majuscules, ex. "QR2024001".
Le QR code est la seule donnée lue au scan pour identifier l'élève.
"""

import io
import re
from typing import Optional

import qrcode

from schoolaccess.config import settings

_TOKEN_BODY = re.compile(r"^[A-Z0-9\-]+$")


def normalize_token(raw: str) -> str:
    """Normalise un QR code lu par la caméra : sans espaces, en majuscules."""
    return raw.strip().upper()


def generate_token(admission_number: str) -> str:
    """Construit le QR code d'un élève à partir de son numéro d'admission."""
    return settings.QR_TOKEN_PREFIX + admission_number.strip().upper()


def is_valid_token(token: str) -> bool:
    prefix = settings.QR_TOKEN_PREFIX
    token = normalize_token(token)
    return (
        token.startswith(prefix)
        and len(token) > len(prefix)
        and bool(_TOKEN_BODY.match(token[len(prefix):]))
    )


def extract_admission_number(token: str) -> Optional[str]:
    """Retourne le numéro d'admission encodé, ou None si le format est invalide."""
    if not is_valid_token(token):
        return None
    return normalize_token(token)[len(settings.QR_TOKEN_PREFIX):]


def generate_qr_image(token: str) -> bytes:
    """Génère une image PNG du QR code encodant le token donné."""
    qr = qrcode.QRCode(version=1, box_size=10, border=4)
    qr.add_data(token)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()
