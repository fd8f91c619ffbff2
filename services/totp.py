"""
TOTP engine: SHA-1, 6 digits, 30 second steps, one step of drift allowed.
"""
import hashlib
import io
import re
import time

import pyotp
import pyotp.utils
import qrcode
import qrcode.image.svg

DIGITS = 6
INTERVAL = 30
VALID_WINDOW = 1  # accept the previous and next step as well
SECRET_LENGTH = 32  # base32 characters = 160 bits

CODE_RE = re.compile(r'^\d{6}$')


def _totp(secret):
    return pyotp.TOTP(secret, digits=DIGITS, digest=hashlib.sha1, interval=INTERVAL)


def generate_secret():
    return pyotp.random_base32(length=SECRET_LENGTH)


def provisioning_uri(secret, account_name, issuer):
    """otpauth:// URI an authenticator app can import"""
    return _totp(secret).provisioning_uri(name=account_name, issuer_name=issuer)


def qr_code_svg(uri):
    """Render the provisioning URI as an inline SVG QR code"""
    image = qrcode.make(uri, image_factory=qrcode.image.svg.SvgPathImage)
    buffer = io.BytesIO()
    image.save(buffer)
    return buffer.getvalue().decode('utf-8')


def is_valid_code_format(code):
    return isinstance(code, str) and CODE_RE.match(code) is not None


def code_at(secret, for_time):
    """The code an authenticator shows at unix time ``for_time``"""
    return _totp(secret).at(int(for_time))


def matching_step(secret, code, for_time=None):
    """Time step (unix time // 30) the code belongs to, or None if it matches none.

    Checks the current step and VALID_WINDOW steps on either side.
    """
    if not is_valid_code_format(code):
        return None
    if for_time is None:
        for_time = time.time()
    for_time = int(for_time)
    otp = _totp(secret)
    for offset in range(-VALID_WINDOW, VALID_WINDOW + 1):
        if pyotp.utils.strings_equal(code, otp.at(for_time, offset)):
            return for_time // INTERVAL + offset
    return None


def verify_code(secret, code, for_time=None):
    """Check a 6-digit code against the secret, tolerating one step of clock drift"""
    return matching_step(secret, code, for_time) is not None
