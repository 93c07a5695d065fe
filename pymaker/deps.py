"""
Import scanning and stdlib classification for generated scripts.

The scan is line based: a line counts as an import only when, after trimming,
it starts with ``import <name>`` or ``from <name> import``. Commented-out
imports are skipped; imports inside multi-line strings are not. No parser is
involved and the stdlib table is static, so results are approximate.
"""
import logging
import re
import subprocess
import sys
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from pymaker.errors import InstallFailure

logger = logging.getLogger(__name__)

IMPORT_RE = re.compile(r"^import\s+([a-zA-Z_][a-zA-Z0-9_]*)")
FROM_IMPORT_RE = re.compile(r"^from\s+([a-zA-Z_][a-zA-Z0-9_]*)\s+import")

STDLIB_MODULES = frozenset({
    "abc", "aifc", "argparse", "array", "ast", "asynchat", "asyncio", "asyncore",
    "atexit", "audioop", "base64", "bdb", "binascii", "binhex", "bisect", "builtins",
    "bz2", "calendar", "cgi", "cgitb", "chunk", "cmath", "cmd", "code", "codecs",
    "codeop", "collections", "colorsys", "compileall", "concurrent", "configparser",
    "contextlib", "contextvars", "copy", "copyreg", "crypt", "csv", "ctypes", "curses",
    "dataclasses", "datetime", "dbm", "decimal", "difflib", "dis", "distutils", "doctest",
    "email", "encodings", "enum", "errno", "faulthandler", "fcntl", "filecmp", "fileinput",
    "fnmatch", "fractions", "ftplib", "functools", "gc", "getopt", "getpass", "gettext",
    "glob", "graphlib", "grp", "gzip", "hashlib", "heapq", "hmac", "html", "http", "idlelib",
    "imaplib", "imghdr", "imp", "importlib", "inspect", "io", "ipaddress", "itertools",
    "json", "keyword", "lib2to3", "linecache", "locale", "logging", "lzma", "mailbox",
    "mailcap", "marshal", "math", "mimetypes", "mmap", "modulefinder", "msilib", "msvcrt",
    "multiprocessing", "netrc", "nis", "nntplib", "numbers", "operator", "optparse", "os",
    "ossaudiodev", "parser", "pathlib", "pdb", "pickle", "pickletools", "pipes", "pkgutil",
    "platform", "plistlib", "poplib", "posix", "posixpath", "pprint", "profile", "pstats",
    "pty", "pwd", "py_compile", "pyclbr", "pydoc", "queue", "quopri", "random", "re",
    "readline", "reprlib", "resource", "rlcompleter", "runpy", "sched", "secrets", "select",
    "selectors", "shelve", "shlex", "shutil", "signal", "site", "smtpd", "smtplib", "sndhdr",
    "socket", "socketserver", "spwd", "sqlite3", "ssl", "stat", "statistics", "string",
    "stringprep", "struct", "subprocess", "sunau", "symbol", "symtable", "sys", "sysconfig",
    "syslog", "tabnanny", "tarfile", "telnetlib", "tempfile", "termios", "test", "textwrap",
    "threading", "time", "timeit", "tkinter", "token", "tokenize", "tomllib", "trace",
    "traceback", "tracemalloc", "tty", "turtle", "turtledemo", "types", "typing", "unicodedata",
    "unittest", "urllib", "uu", "uuid", "venv", "warnings", "wave", "weakref", "webbrowser",
    "winreg", "winsound", "wsgiref", "xdrlib", "xml", "xmlrpc", "zipapp", "zipfile", "zipimport",
    "zlib", "_thread", "__future__",
})


def extract_imports(code: str) -> List[str]:
    """Top-level package names imported by `code`, sorted and deduplicated."""
    names = set()
    for line in code.splitlines():
        trimmed = line.strip()
        m = IMPORT_RE.match(trimmed) or FROM_IMPORT_RE.match(trimmed)
        if m:
            names.add(m.group(1))
    return sorted(names)


def is_stdlib(package: str) -> bool:
    return package in STDLIB_MODULES


def detect_dependencies(code: str) -> List[str]:
    """Imported names missing from the stdlib table, i.e. candidates for pip."""
    return [name for name in extract_imports(code) if not is_stdlib(name)]


@dataclass
class InstallResult:
    ok: bool
    packages: List[str] = field(default_factory=list)
    stderr: str = ""
    returncode: Optional[int] = 0


def install_packages(packages: Iterable[str], python: Optional[str] = None) -> InstallResult:
    """
    Install `packages` with ``<python> -m pip install -q``.
    Raises InstallFailure on a non-zero exit or when pip cannot be started.
    """
    pkgs = list(packages)
    if not pkgs:
        return InstallResult(ok=True)
    cmd = [python or sys.executable, "-m", "pip", "install", "-q", *pkgs]
    logger.info("pip_install packages=%s", ",".join(pkgs))
    try:
        proc = subprocess.run(cmd, capture_output=True, text=True, errors="replace")
    except OSError as exc:
        raise InstallFailure(pkgs, str(exc)) from exc
    if proc.returncode != 0:
        logger.warning("pip_install_failed rc=%s", proc.returncode)
        raise InstallFailure(pkgs, proc.stderr or "", proc.returncode)
    return InstallResult(ok=True, packages=pkgs, stderr=proc.stderr or "", returncode=proc.returncode)
