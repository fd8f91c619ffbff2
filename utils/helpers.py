import os
import secrets
import string
from datetime import datetime, timezone

# Configuration
LINK_TOKEN_BYTES = int(os.environ.get('LINK_TOKEN_BYTES', '32'))
BACKUP_CODE_ALPHABET = string.ascii_uppercase + string.digits

def utcnow():
    """Current UTC time as a naive datetime, matching what the database stores"""
    return datetime.now(timezone.utc).replace(tzinfo=None)

def generate_link_token():
    """Generate a URL-safe feedback link token"""
    # 32 bytes -> 43 characters of base64url, well inside the column width
    return secrets.token_urlsafe(LINK_TOKEN_BYTES)

def generate_backup_codes(count=8, length=8):
    """Generate a set of distinct single-use 2FA backup codes"""
    codes = []
    while len(codes) < count:
        code = ''.join(secrets.choice(BACKUP_CODE_ALPHABET) for _ in range(length))
        if code not in codes:
            codes.append(code)
    return codes

def normalize_backup_code(code):
    """Uppercase a backup code and drop the spaces/dashes people type in"""
    return ''.join(ch for ch in (code or '') if ch not in ' -\t').upper()

def get_client_ip(request):
    """Best guess at the real client address behind proxies"""
    forwarded = request.headers.get('X-Forwarded-For', '')
    client_ip = (request.headers.get('CF-Connecting-IP')
                 or request.headers.get('X-Real-IP')
                 or forwarded.split(',')[0]
                 or request.remote_addr
                 or 'unknown')
    client_ip = client_ip.strip()

    # Remove port from IPv4 "host:port" (leave IPv6 alone)
    if client_ip.count(':') == 1:
        host, port = client_ip.split(':')
        if port.isdigit():
            client_ip = host

    return client_ip
