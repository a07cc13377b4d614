# @even rygh
"""
Pattern library for file and request inspection.

All regex patterns are pre-compiled once at import time.
Nothing in here has state; detectors import what they need.
"""
import re
from typing import Dict, FrozenSet, List, Pattern, Tuple

# Suspicious code, one entry per pattern family.
# Each family that matches yields one suspicious_code finding.
SUSPICIOUS_CODE_PATTERNS: Dict[str, Pattern[str]] = {
    "eval_call": re.compile(r"eval\s*\(", re.IGNORECASE),
    "base64_decode_call": re.compile(r"base64_decode\s*\(", re.IGNORECASE),
    "gzinflate_call": re.compile(r"gzinflate\s*\(", re.IGNORECASE),
    "preg_replace_eval": re.compile(r"preg_replace\s*\(\s*['\"].*/e['\"].*\)", re.IGNORECASE),
    "superglobal_call": re.compile(r"\$_(?:GET|POST|REQUEST|COOKIE|SERVER)\s*\[.*\]\s*\(", re.IGNORECASE),
    "packed_eval_header": re.compile(
        r"<\?php\s+/\*.*\*/\s*\$[a-z0-9_]+=.*;\s*eval\(", re.IGNORECASE | re.DOTALL
    ),
    "assert_call": re.compile(r"assert\s*\(", re.IGNORECASE),
    "create_function_call": re.compile(r"create_function\s*\(", re.IGNORECASE),
    "variable_function_call": re.compile(r"\$\{[^}]*\}\s*=.*;\s*\$\{[^}]*\}\(", re.IGNORECASE | re.DOTALL),
}

DANGEROUS_FUNCTIONS: Tuple[str, ...] = (
    "eval",
    "base64_decode",
    "gzinflate",
    "gzuncompress",
    "gzdeflate",
    "str_rot13",
    "shell_exec",
    "system",
    "exec",
    "passthru",
    "proc_open",
    "popen",
    "file_get_contents",
    "curl_exec",
    "fsockopen",
    "fwrite",
    "fopen",
    "file_put_contents",
    "move_uploaded_file",
)

# \b keeps "exec" from matching inside "shell_exec" and friends
DANGEROUS_FUNCTION_PATTERNS: Dict[str, Pattern[str]] = {
    name: re.compile(r"\b" + re.escape(name) + r"\s*\(", re.IGNORECASE)
    for name in DANGEROUS_FUNCTIONS
}

# Keywords searched for (case-insensitively) inside decoded base64 blobs
DECODED_PAYLOAD_KEYWORDS: Tuple[str, ...] = (
    "eval(",
    "shell_exec(",
    "system(",
    "exec(",
    "passthru(",
    "file_get_contents(",
    "curl_exec(",
    "base64_decode(",
    "$_post",
    "$_get",
    "$_request",
    "assert(",
)

BASE64_CANDIDATE = re.compile(rb"[A-Za-z0-9+/]{50,}={0,2}")

# File names
HEX_NAME = re.compile(r"^[a-f0-9]{32}$", re.IGNORECASE)
RANDOM_ALNUM_NAME = re.compile(r"^[a-zA-Z0-9]{20,}$")

EXECUTABLE_EXTENSIONS: FrozenSet[str] = frozenset(
    {"php", "phtml", "php3", "php4", "php5", "php7", "pht", "phar", "phps"}
)

# Uploads that must never be accepted
DANGEROUS_UPLOAD_EXTENSIONS: FrozenSet[str] = frozenset(
    {"php", "phtml", "php3", "php4", "php5", "pht", "phar", "phps"}
)

SUSPICIOUS_ATTACHMENT_EXTENSIONS: FrozenSet[str] = frozenset(
    {"exe", "bat", "cmd", "scr", "com", "pif", "vbs", "js"}
)

# Files expected to be plain text; only these get a size_anomaly finding
SIZE_CHECKED_EXTENSIONS: FrozenSet[str] = frozenset({"php", "js", "css", "txt"})

# Dropped-payload sweep of the uploads tree
DIRECT_CREATION_EXTENSIONS: FrozenSet[str] = frozenset({"php", "phtml"})

# Request inspection
SQL_INJECTION_PATTERNS: List[Pattern[str]] = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"union\s+select",
        r"select\s+[^;]{0,256}?\s+from",
        r"insert\s+into",
        r"delete\s+from",
        r"drop\s+table",
        r"update\s+[^;]{0,256}?\s+set",
        r"exec\s*\(",
        r"script\s*>",
        r"'\s*or\s*'",
        r"'\s*and\s*'",
        r"'\s*;\s*--",
        r"benchmark\s*\(",
        r"sleep\s*\(",
        r"load_file\s*\(",
    )
]

XSS_PATTERNS: List[Pattern[str]] = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"<script[^>]*>",
        r"</script>",
        r"javascript:",
        r"\bon\w+\s*=",
        r"<iframe[^>]*>",
        r"<object[^>]*>",
        r"<embed[^>]*>",
        r"<link[^>]*>",
        r"<meta[^>]*>",
        r"expression\s*\(",
        r"vbscript:",
        r"data:text/html",
    )
]

# Static configuration checks: define('NAME', value) in the secrets file
DEFINE_STATEMENT = re.compile(
    r"define\s*\(\s*['\"](?P<name>[A-Z_]+)['\"]\s*,\s*(?P<value>[^)]+?)\s*\)",
    re.IGNORECASE,
)
PLATFORM_VERSION = re.compile(r"\$wp_version\s*=\s*['\"](?P<version>[^'\"]+)['\"]")

# External AV report line: "<path>: <signature> FOUND"
AV_FOUND_LINE = re.compile(r"^(?P<path>.+?):\s*(?P<signature>.+?)\s+FOUND$")


def extension_of(name: str) -> str:
    """Lower-case extension without the dot; dotfiles like .htaccess map to 'htaccess'."""
    if "." not in name:
        return ""
    return name.rsplit(".", 1)[1].lower()
