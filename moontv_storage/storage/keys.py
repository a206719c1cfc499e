"""
Key construction for the key-value backends.

Every per-user key is ``u:<username>:<kind>[:<composite>]``; site-wide keys
live under ``site:`` and the legacy admin blob under ``admin:config``. These
formats are shared with data written by earlier deployments and must not change.
"""

import re

from moontv_storage.exceptions import InvalidUsernameError

COMPOSITE_SEPARATOR = "+"

PLAY_RECORD = "pr"
FAVORITE = "fav"
SKIP_CONFIG = "skip"
SEARCH_HISTORY = "sh"
PASSWORD = "pwd"
ROLE = "role"
BANNED = "banned"

ADMIN_CONFIG_KEY = "admin:config"
SITE_CONFIG_KEY = "site:config"
SOURCE_CONFIG_KEY = "site:sources"
CATEGORIES_KEY = "site:categories"
ALLOW_REGISTER_KEY = "site:allow_register"

# Characters with special meaning in Redis MATCH patterns
_GLOB_SPECIAL = re.compile(r"([*?\[\]\\])")


def composite_key(source: str, item_id: str) -> str:
    """Joins a source identifier and an item identifier into one storage key."""
    return f"{source}{COMPOSITE_SEPARATOR}{item_id}"


def split_composite_key(key: str) -> tuple[str, str]:
    """
    Splits a composite key back into ``(source, id)``.

    The split happens at the first ``+``, so a source containing ``+`` cannot be
    recovered unambiguously.
    """
    source, sep, item_id = key.partition(COMPOSITE_SEPARATOR)
    if not sep:
        raise ValueError(f"'{key}' is not a composite key")
    return source, item_id


def require_username(username: str) -> str:
    if not isinstance(username, str) or not username:
        raise InvalidUsernameError("A non-empty username is required.")
    return username


def user_prefix(username: str, kind: str) -> str:
    """Returns the key prefix shared by all records of one kind for one user."""
    return f"u:{require_username(username)}:{kind}:"


def user_key(username: str, kind: str, key: str | None = None) -> str:
    if key is None:
        return f"u:{require_username(username)}:{kind}"
    return user_prefix(username, kind) + key


def play_record_key(username: str, key: str) -> str:
    return user_key(username, PLAY_RECORD, key)


def favorite_key(username: str, key: str) -> str:
    return user_key(username, FAVORITE, key)


def skip_config_key(username: str, source: str, item_id: str) -> str:
    return user_key(username, SKIP_CONFIG, composite_key(source, item_id))


def search_history_key(username: str) -> str:
    return user_key(username, SEARCH_HISTORY)


def password_key(username: str) -> str:
    return user_key(username, PASSWORD)


def role_key(username: str) -> str:
    return user_key(username, ROLE)


def banned_key(username: str) -> str:
    return user_key(username, BANNED)


def escape_glob(text: str) -> str:
    """Escapes glob metacharacters so ``text`` only matches itself in a MATCH pattern."""
    return _GLOB_SPECIAL.sub(r"\\\1", text)


def prefix_pattern(prefix: str) -> str:
    """Builds a MATCH pattern selecting every key that starts with ``prefix``."""
    return escape_glob(prefix) + "*"


def user_field_pattern(kind: str) -> str:
    """Pattern matching the single-valued ``kind`` key of every user."""
    return f"u:*:{kind}"


_USER_FIELD_RE = re.compile(r"^u:(.+?):(pwd|role|banned)$")


def username_from_field_key(key: str) -> str | None:
    """Extracts the username from a ``u:<name>:pwd|role|banned`` key."""
    match = _USER_FIELD_RE.match(key)
    return match.group(1) if match else None


def glob_to_regex(pattern: str) -> re.Pattern[str]:
    """
    Translates a Redis-style glob (``*``, ``?``, ``[...]``, backslash escapes)
    into a compiled regular expression.
    """
    out = []
    i = 0
    while i < len(pattern):
        ch = pattern[i]
        if ch == "\\" and i + 1 < len(pattern):
            out.append(re.escape(pattern[i + 1]))
            i += 2
            continue
        if ch == "*":
            out.append(".*")
        elif ch == "?":
            out.append(".")
        elif ch == "[":
            end = pattern.find("]", i + 1)
            if end == -1:
                out.append(re.escape(ch))
            else:
                body = pattern[i + 1 : end].replace("\\", "\\\\")
                out.append(f"[{body}]")
                i = end
        else:
            out.append(re.escape(ch))
        i += 1
    return re.compile("^" + "".join(out) + "$", re.DOTALL)
