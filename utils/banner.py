"""Startup banner with build details, printed once per process."""
import os
import subprocess
from datetime import datetime

_banner_shown = False

TITLE = r"""
  __              _ _                _
 / _| ___  ___  __| | |__   __ _  ___| | __
| |_ / _ \/ _ \/ _` | '_ \ / _` |/ __| |/ /
|  _|  __/  __/ (_| | |_) | (_| | (__|   <
|_|  \___|\___|\__,_|_.__/ \__,_|\___|_|\_\
"""

RULE = "\033[94m" + "=" * 70 + "\033[0m"


def _git(*args):
    """Output of a git command, or None outside a checkout"""
    try:
        result = subprocess.run(['git', *args], capture_output=True, text=True,
                                check=True, timeout=5)
    except (subprocess.SubprocessError, OSError):
        return None
    return result.stdout.strip() or None


def build_details():
    """(label, value) pairs for the banner.

    Container images have no .git, so BUILD_TIME and GIT_HASH injected at
    build time take precedence over asking git.
    """
    built = os.environ.get('BUILD_TIME') or datetime.utcnow().strftime('%Y-%m-%d %H:%M:%S UTC')
    commit = os.environ.get('GIT_HASH') or _git('rev-parse', 'HEAD') or 'unknown'

    details = [('Build Time', built), ('Commit', commit[:8])]
    committed_at = _git('log', '-1', '--format=%ci')
    if committed_at:
        details.append(('Committed', committed_at))
    return details


def print_startup_banner():
    global _banner_shown

    if _banner_shown:
        return
    _banner_shown = True

    print("\033[96m" + TITLE + "\033[0m")
    print(RULE)
    for label, value in build_details():
        print(f"   {label + ':':<12} {value}")
    print(RULE)
    print("\033[93mStarting Ticket Feedback Portal...\033[0m")
    print()
