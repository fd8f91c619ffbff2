from .helpers import (utcnow, generate_link_token, generate_backup_codes,
                      normalize_backup_code, get_client_ip)
from .i18n import get_language, t

__all__ = ['utcnow', 'generate_link_token', 'generate_backup_codes',
           'normalize_backup_code', 'get_client_ip', 'get_language', 't']
