#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
JohnUnlock — John the Ripper Export, Crack & Unlock

Features:
- Exports PDF and ZIP password hashes into one labelled hash file
- Runs john in wordlist or incremental mode against that hash file
- Parses john output (ANSI colours, mixed line endings) into per-format groups
- Recovers already-cracked passwords from the pot file when john has nothing left to do
- Saves an unlocked copy of every file whose password was recovered
"""
import argparse
import base64
import binascii
import logging
import os
import re
import shutil
import signal
import subprocess
import sys
import zipfile
import zlib
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from threading import Lock
from typing import Callable, Dict, Iterable, List, Optional, Tuple

import pikepdf
import pyzipper
from tqdm import tqdm as _tqdm

# =============================================
# PROGRESS BAR
# =============================================
def progress(it, **kw):
    return _tqdm(it, **kw) if sys.stdout.isatty() else it

# =============================================
# CONFIGURATION
# =============================================
def _default_home() -> Path:
    if sys.platform.startswith("win"):
        base = os.environ.get("LOCALAPPDATA") or Path.home() / "AppData" / "Local"
    else:
        base = os.environ.get("XDG_DATA_HOME") or Path.home() / ".local" / "share"
    return Path(base) / "johnunlock"

# Per-user data directory (pot file lives here unless overridden)
JOHNUNLOCK_HOME = Path(os.environ.get("JOHNUNLOCK_HOME") or _default_home())
DEFAULT_POT_PATH = Path(os.environ.get("JOHNUNLOCK_POT") or JOHNUNLOCK_HOME / "john.pot")

# External tools; None means "look it up on PATH"
JOHN_BIN = os.environ.get("JOHNUNLOCK_JOHN")
ZIP2JOHN_BIN = os.environ.get("JOHNUNLOCK_ZIP2JOHN")
PDF2JOHN_SCRIPT = os.environ.get("JOHNUNLOCK_PDF2JOHN")

# Hard timeout for a single external process, in seconds
HARD_TIMEOUT = int(os.environ.get("JOHNUNLOCK_TIMEOUT", 7200))
LIST_TIMEOUT = 60

# Fallback CPU count when os.cpu_count() returns None (unknown system)
FALLBACK_CPU_COUNT = 4
DEFAULT_WORKERS = min(8, (os.cpu_count() or FALLBACK_CPU_COUNT))
MAX_WORKERS = int(os.environ.get("JOHNUNLOCK_MAX_WORKERS", DEFAULT_WORKERS))

UNLOCKED_FILE_SUFFIX = "_unlocked"

# Exit codes
EXIT_OK = 0
EXIT_ERROR = 1
EXIT_PARTIAL = 2

# =============================================
# Logging
# =============================================
logging.basicConfig(
    level=logging.INFO,
    format="[%(asctime)s] %(message)s",
    datefmt="%H:%M:%S"
)
log = logging.getLogger(__name__)

# Thread-safe logging lock for parallel operations
_log_lock = Lock()

def parallel_log(message: str, level: int = logging.INFO):
    """Thread-safe logging for parallel operations"""
    with _log_lock:
        log.log(level, message)

def sigint_handler(signum, frame):
    log.warning("\nInterrupted by user — exiting cleanly")
    sys.exit(0)

# =============================================
# ERRORS
# =============================================
class JohnUnlockError(Exception):
    """Base class for every failure raised by johnunlock"""


class HashFileError(JohnUnlockError, ValueError):
    """A hash file line could not be decoded"""

    def __init__(self, message: str, line_number: Optional[int] = None, line: Optional[str] = None):
        if line_number is not None:
            message = f"line {line_number}: {message}"
        super().__init__(message)
        self.line_number = line_number
        self.line = line


class MalformedLine(HashFileError):
    """Line has no label:hash separator"""


class UnrecognizedFormat(HashFileError):
    """Hash does not start with any known format prefix"""


class MalformedLabel(HashFileError):
    """Label is not the base64 encoding of a path"""


class MalformedHash(HashFileError):
    """Embedded file metadata is missing or has the wrong field count"""


class UnsupportedFormat(JohnUnlockError, ValueError):
    """File extension has no matching FileFormat"""


class OutputParseError(JohnUnlockError):
    def __init__(self, message: str, line: Optional[str] = None):
        super().__init__(message)
        self.line = line


class UnrecognizedFileFormat(OutputParseError):
    """john reported a format this tool does not know how to unlock"""


class UnmatchedLabel(OutputParseError):
    """john echoed a label that is not in the hash file"""


class ToolError(JohnUnlockError):
    def __init__(self, message: str, reason: str = "FAILED", detail: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.reason = reason
        self.detail = detail

    def __str__(self):
        return f"{self.message}: {self.detail}" if self.detail else self.message


class UnlockError(JohnUnlockError):
    """A recovered password could not be used to save an unlocked copy"""

# =============================================
# FORMAT REGISTRY
# =============================================
class FileFormat(Enum):
    """
    Supported locked-file kinds.

    Each member carries the hash prefixes john uses for it, the file
    extensions it is detected from, and how many metadata fields follow
    the '::' delimiter in its hash (0 means the path lives in the label).
    """
    PKZIP = (("$pkzip$", "$pkzip2$"), (".zip",), 3)
    PDF = (("$pdf$",), (".pdf",), 0)

    def __init__(self, hash_prefixes: Tuple[str, ...], extensions: Tuple[str, ...], metadata_fields: int):
        self.hash_prefixes = hash_prefixes
        self.extensions = extensions
        self.metadata_fields = metadata_fields


def _prefixes_by_length() -> List[Tuple[str, FileFormat]]:
    pairs = [(prefix, fmt) for fmt in FileFormat for prefix in fmt.hash_prefixes]
    return sorted(pairs, key=lambda p: len(p[0]), reverse=True)

_HASH_PREFIXES = _prefixes_by_length()

def format_for_hash(hash_: str) -> Optional[FileFormat]:
    """Longest matching hash prefix wins"""
    for prefix, fmt in _HASH_PREFIXES:
        if hash_.startswith(prefix):
            return fmt
    return None

def format_for_token(token: str) -> Optional[FileFormat]:
    """Resolve the format name john prints in a 'Loaded ...' header"""
    return FileFormat.__members__.get((token or "").strip().upper())

def detect_format(path_or_extension) -> FileFormat:
    text = str(path_or_extension).strip()
    ext = (Path(text).suffix or text).lower()
    if not ext.startswith("."):
        ext = "." + ext
    for fmt in FileFormat:
        if ext in fmt.extensions:
            return fmt
    raise UnsupportedFormat(f"Unsupported file format: {ext}")

# =============================================
# HASH FILE CODEC
# =============================================
@dataclass(frozen=True)
class HashEntry:
    label: str
    hash: str  # as john stores it in the pot (metadata stripped)
    format: FileFormat
    original_path: str


@dataclass
class HashFileIndex:
    """
    Lookups built from one hash file.
    Keys are lower-cased: john labels and pot hashes compare case-insensitively.
    """
    label_to_path: Dict[str, str] = field(default_factory=dict)
    hashes_by_format: Dict[FileFormat, Dict[str, str]] = field(default_factory=dict)
    entries: List[HashEntry] = field(default_factory=list)

    def add(self, entry: HashEntry):
        self.entries.append(entry)
        self.label_to_path[entry.label.lower()] = entry.original_path
        self.hashes_by_format.setdefault(entry.format, {})[entry.hash.lower()] = entry.original_path

    def path_for_label(self, label: str) -> Optional[str]:
        return self.label_to_path.get(label.lower())


def encode_path_label(path) -> str:
    """base64 of the absolute UTF-8 path; john echoes it back next to the password"""
    absolute = os.path.abspath(str(path))
    return base64.b64encode(absolute.encode("utf-8")).decode("ascii")

def decode_path_label(label: str, line_number: Optional[int] = None, line: Optional[str] = None) -> str:
    try:
        path = base64.b64decode(label, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as e:
        raise MalformedLabel(f"Label {label!r} is not a base64 encoded path ({e})", line_number, line) from e
    if not path:
        raise MalformedLabel(f"Label {label!r} decodes to an empty path", line_number, line)
    return path

def decode_hash_line(line: str, line_number: Optional[int] = None) -> HashEntry:
    label, sep, hash_ = line.partition(":")
    if not sep:
        raise MalformedLine(
            "Each line must contain a label and hash separated by a colon (:)", line_number, line)

    label = label.strip()
    hash_ = hash_.strip()

    fmt = format_for_hash(hash_)
    if fmt is None:
        supported = ", ".join(prefix for prefix, _ in _HASH_PREFIXES)
        raise UnrecognizedFormat(f"Unsupported hash format. Supported prefixes are {supported}", line_number, line)

    if not fmt.metadata_fields:
        return HashEntry(label, hash_, fmt, decode_path_label(label, line_number, line))

    # coreHash::field1:field2:originalPath (path may itself contain colons)
    core_hash, sep, metadata = hash_.partition("::")
    if not sep:
        raise MalformedHash(f"Missing double colon (::) in {fmt.name} hash", line_number, line)
    fields = metadata.split(":", fmt.metadata_fields - 1)
    if len(fields) != fmt.metadata_fields:
        raise MalformedHash(
            f"Expected {fmt.metadata_fields} colon separated metadata fields, got {len(fields)}",
            line_number, line)
    return HashEntry(label, core_hash, fmt, fields[-1])

def decode_hash_file(path) -> HashFileIndex:
    """
    Decode every non-empty line of a hash file.
    Any bad line aborts the whole decode; a fresh index is returned per call.
    """
    path = Path(path)
    log.info(f"Parsing hash entries from file: {path}")
    index = HashFileIndex()
    # split on bytes so an undecodable line can still be reported by number
    for line_number, raw in enumerate(path.read_bytes().splitlines(), start=1):
        try:
            # a leading BOM would otherwise end up inside the first label
            line = raw.decode("utf-8-sig" if line_number == 1 else "utf-8")
        except UnicodeDecodeError as e:
            raise MalformedLine(f"Line is not valid UTF-8 ({e.reason} at byte {e.start})",
                                line_number, raw.decode("utf-8", errors="replace").strip()) from e
        line = line.strip()
        if not line:
            continue
        entry = decode_hash_line(line, line_number)
        log.debug(f"Label: '{entry.label}', Format: {entry.format.name}, Path: '{entry.original_path}'")
        index.add(entry)
    log.info(f"Loaded {len(index.entries):,} hash entries "
             f"({', '.join(f'{fmt.name}={len(h)}' for fmt, h in index.hashes_by_format.items()) or 'none'})")
    return index

def encode_hash_line(hash_: str, fmt: FileFormat, original_path) -> str:
    """
    Inverse of decode_hash_line for freshly extracted hashes.
    Metadata-bearing formats already carry their label and path, so they pass through.
    """
    hash_ = hash_.strip()
    if fmt.metadata_fields:
        return hash_
    return f"{encode_path_label(original_path)}:{hash_}"

def write_hash_line(hash_file, line: str, append: bool = False):
    hash_file = Path(hash_file)
    hash_file.parent.mkdir(parents=True, exist_ok=True)
    log.debug(f"Writing hash to output file: {hash_file}")
    with hash_file.open("a" if append else "w", encoding="utf-8") as f:
        f.write(line.rstrip("\r\n") + "\n")

# =============================================
# POT STORE
# =============================================
def decode_plaintext(text: str) -> str:
    """
    Decode john's $HEX[...] password encoding.
    Bytes that are not UTF-8 survive as surrogate escapes; see password_bytes.
    """
    if text.startswith("$HEX[") and text.endswith("]"):
        try:
            raw = bytes.fromhex(text[5:-1])
        except ValueError:
            return text
        return raw.decode("utf-8", errors="surrogateescape")
    return text

def password_bytes(password: str) -> bytes:
    """The exact bytes john cracked, including non UTF-8 $HEX[...] passwords"""
    return password.encode("utf-8", errors="surrogateescape")

def load_pot_store(path) -> Dict[str, str]:
    """
    hash → password from a john pot file, keyed by lower-cased hash.
    A missing file is an empty store; lines without a colon are skipped.
    """
    path = Path(path)
    store: Dict[str, str] = {}
    if not path.is_file():
        log.debug(f"Pot file does not exist: {path}. Skipping pot file parsing.")
        return store

    log.info(f"Reading pot file: {path}")
    skipped = 0
    with path.open("r", encoding="utf-8", errors="ignore") as f:
        for line in f:
            line = line.rstrip("\r\n")
            hash_, sep, password = line.partition(":")
            if not sep:
                if line.strip():
                    log.debug(f"Invalid pot file line format: '{line}'. Skipping this line.")
                skipped += 1
                continue
            store[hash_.lower()] = decode_plaintext(password)
    if skipped:
        log.info(f"Skipped {skipped:,} malformed pot line(s)")
    log.info(f"Collected {len(store):,} cracked hashes from pot file.")
    return store

def clear_pot_store(path) -> bool:
    """Best-effort delete; returns True only if a pot file was removed"""
    path = Path(path)
    if not path.exists():
        log.info("Pot file does not exist; no need to refresh.")
        return False
    log.warning(f"Refreshing pot file: {path}")
    try:
        path.unlink()
    except OSError as e:
        log.warning(f"Failed to refresh pot file: {e}")
        return False
    log.info("Pot file refreshed successfully.")
    return True

# =============================================
# RESULT MODEL
# =============================================
def unlocked_target_path(original_path: str, output_dir=None) -> str:
    """<dir>/<stem>_unlocked<ext>, next to the original unless output_dir is given"""
    directory = str(output_dir) if output_dir else os.path.dirname(original_path)
    stem, ext = os.path.splitext(os.path.basename(original_path))
    return os.path.join(directory, f"{stem}{UNLOCKED_FILE_SUFFIX}{ext}")


@dataclass(frozen=True)
class UnlockRecord:
    format: FileFormat
    original_path: str
    password: str
    target_path: str

    @classmethod
    def create(cls, original_path: str, password: str, fmt: FileFormat, output_dir=None) -> "UnlockRecord":
        return cls(fmt, original_path, password, unlocked_target_path(original_path, output_dir))


@dataclass
class FormatGroup:
    """One 'Loaded N password hashes (...)' block of john output"""
    format: FileFormat
    hash_count: int = 0
    salt_count: int = 1
    encryption_algorithms: str = ""
    cracked_by_path: Dict[str, UnlockRecord] = field(default_factory=dict)

    def record(self, unlock: UnlockRecord):
        # one record per file; later lines replace earlier ones
        self.cracked_by_path[unlock.original_path.lower()] = unlock

    @property
    def records(self) -> List[UnlockRecord]:
        return list(self.cracked_by_path.values())

# =============================================
# JOHN OUTPUT PARSER
# =============================================
ANSI_ESCAPE_RE = re.compile(r"\x1B(?:[@-Z\\-_]|\[[0-?]*[ -/]*[@-~])")
NEWLINE_RE = re.compile(r"\r\n|\r|\n")

FORMAT_GROUP_RE = re.compile(
    r"Loaded (\d+) password hash(?:es)?(?: with (\d+) different salts)? "
    r"\(([^\s\[\]()]+)[^\[\]()]*?(?: \[([^\]]*)\])?\)"
)

# Non-greedy password, then the label john echoes in parentheses.
# An empty password leaves only "(label)" once the line is stripped.
CRACKED_PASSWORD_RE = re.compile(r"^(?:(.*?)\s+)?\(([^\s()]+)\)$")

NO_HASHES_LEFT_MESSAGE = "No password hashes left to crack"

def strip_ansi(text: str) -> str:
    return ANSI_ESCAPE_RE.sub("", text)

def _to_int(value: Optional[str], default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


class ParserState(Enum):
    NO_ACTIVE_GROUP = "no_active_group"
    IN_GROUP = "in_group"


class JohnOutputParser:
    """
    Turns the captured stdout of one john run into FormatGroups.

    Every physical line is stripped of ANSI escapes and whitespace and then
    classified as a group header, the 'nothing left to crack' sentinel, a
    cracked 'password (label)' line, or noise. Cracked lines and the
    sentinel only count once a header has opened a group.
    """

    def __init__(self, index: HashFileIndex, pot: Optional[Dict[str, str]] = None, output_dir=None):
        self.index = index
        self.pot = pot or {}
        self.output_dir = output_dir
        self.state = ParserState.NO_ACTIVE_GROUP
        self.groups: List[FormatGroup] = []

    @property
    def current(self) -> Optional[FormatGroup]:
        return self.groups[-1] if self.state is ParserState.IN_GROUP else None

    def parse(self, output: str) -> List[FormatGroup]:
        self.state = ParserState.NO_ACTIVE_GROUP
        self.groups = []
        for raw in NEWLINE_RE.split(output or ""):
            line = strip_ansi(raw).strip()
            if line:
                self.feed(line)
        self._close_group()
        return self.groups

    def feed(self, line: str):
        header = FORMAT_GROUP_RE.search(line)
        if header:
            log.debug(f"Matched '{line}'. Adding new format group.")
            self._close_group()
            self._open_group(header, line)
            return

        if self.state is not ParserState.IN_GROUP:
            return

        if line.lower().startswith(NO_HASHES_LEFT_MESSAGE.lower()):
            log.debug(f"Matched '{line}'. Loading cracked passwords from pot file.")
            self._recover_from_pot()
            return

        cracked = CRACKED_PASSWORD_RE.match(line)
        if cracked:
            log.debug(f"Matched '{line}'. Adding cracked password.")
            self._record_cracked(cracked.group(1) or "", cracked.group(2), line)

    def _open_group(self, match: re.Match, line: str):
        token = match.group(3)
        fmt = format_for_token(token)
        if fmt is None:
            raise UnrecognizedFileFormat(f"Unsupported file format found in john output: {token}", line)
        self.groups.append(FormatGroup(
            format=fmt,
            hash_count=_to_int(match.group(1), 0),
            salt_count=_to_int(match.group(2), 1),
            encryption_algorithms=match.group(4) or "",
        ))
        self.state = ParserState.IN_GROUP

    def _close_group(self):
        group = self.current
        if group is not None and not group.cracked_by_path:
            log.info(f"No passwords recovered for {group.format.name} group ({group.hash_count} hash(es))")

    def _record_cracked(self, password: str, label: str, line: str):
        path = self.index.path_for_label(label)
        if path is None:
            raise UnmatchedLabel(f"No file in the hash file matches label {label!r}", line)
        group = self.current
        group.record(UnlockRecord.create(path, password, group.format, self.output_dir))

    def _recover_from_pot(self):
        group = self.current
        hashes = self.index.hashes_by_format.get(group.format)
        if not hashes:
            log.debug(f"No loaded hash entries for format {group.format.name}. Skipping pot lookup.")
            return
        for hash_key, path in hashes.items():
            password = self.pot.get(hash_key)
            if password is None:
                log.debug(f"No password in pot file for hash: {hash_key[:32]}...")
                continue
            group.record(UnlockRecord.create(path, password, group.format, self.output_dir))


def parse_john_output(output: str, index: HashFileIndex, pot: Optional[Dict[str, str]] = None,
                      output_dir=None) -> List[FormatGroup]:
    return JohnOutputParser(index, pot, output_dir).parse(output)

# =============================================
# PROCESS RUNNER
# =============================================
@dataclass
class ProcessResult:
    success: bool
    stdout: str = ""
    stderr: str = ""
    returncode: int = 0


def resolve_bin(*names: str) -> Optional[str]:
    """Return first resolvable binary from names; try .exe on Windows too."""
    for name in names:
        if not name:
            continue
        p = shutil.which(name)
        if p:
            return p
        if sys.platform.startswith("win") and not name.lower().endswith(".exe"):
            p = shutil.which(name + ".exe")
            if p:
                return p
    return None

def run_command(args: List, timeout_s: int = HARD_TIMEOUT, log_output: bool = True,
                fail_on_stderr: bool = False, cwd=None) -> ProcessResult:
    if not args or not args[0]:
        raise ToolError("Executable not resolved", "NOT_INSTALLED", "args[0] missing")
    args = [str(a) for a in args]
    log.debug(f"Executing command: {' '.join(args)}")
    try:
        res = subprocess.run(
            args,
            stdout=subprocess.PIPE, stderr=subprocess.PIPE,
            encoding="utf-8", errors="replace",
            timeout=timeout_s, cwd=str(cwd) if cwd else None,
        )
    except subprocess.TimeoutExpired as e:
        raise ToolError("Timed out while running the tool", "TIMEOUT", str(e)) from e
    except OSError as e:
        raise ToolError(f"Failed to start {args[0]}", "NOT_INSTALLED", str(e)) from e

    stdout, stderr = res.stdout or "", res.stderr or ""
    log.debug(f"Process exited with code: {res.returncode}")
    if log_output:
        for line in NEWLINE_RE.split(stdout):
            if line:
                log.debug(f"[STDOUT] {line}")
        for line in NEWLINE_RE.split(stderr):
            if line:
                log.debug(f"[STDERR] {line}")

    return ProcessResult(
        success=res.returncode == 0 and (not fail_on_stderr or not stderr.strip()),
        stdout=stdout,
        stderr=stderr,
        returncode=res.returncode,
    )

# =============================================
# JOHN RUNNER
# =============================================
class JohnRunner:
    """Builds john command lines and runs them against one pot file"""

    def __init__(self, john_bin: Optional[str] = None, pot_path=DEFAULT_POT_PATH, timeout_s: int = HARD_TIMEOUT):
        self.john_bin = john_bin or JOHN_BIN or resolve_bin("john")
        self.pot_path = Path(pot_path)
        self.timeout_s = timeout_s
        self._incremental_modes: Optional[List[str]] = None

    def _require_bin(self):
        if not self.john_bin:
            raise ToolError("john not installed", "NOT_INSTALLED",
                            "add john to PATH or set JOHNUNLOCK_JOHN")

    def crack_args(self, hash_file, wordlist=None, incremental_mode: Optional[str] = None) -> List[str]:
        args = [self.john_bin, f"--pot={self.pot_path}"]
        if wordlist:
            args.append(f"--wordlist={wordlist}")
        elif incremental_mode:
            args.append(f"--incremental={incremental_mode}")
        else:
            args.append("--incremental")
        args.append(str(hash_file))
        return args

    def crack(self, hash_file, wordlist=None, incremental_mode: Optional[str] = None) -> ProcessResult:
        self._require_bin()
        if wordlist and not Path(wordlist).is_file():
            raise FileNotFoundError(f"Wordlist file not found: {wordlist}")
        self.pot_path.parent.mkdir(parents=True, exist_ok=True)
        mode = f"wordlist {wordlist}" if wordlist else f"incremental {incremental_mode or '(default)'}"
        log.info(f"Starting john ({mode}) against {hash_file}")
        return run_command(self.crack_args(hash_file, wordlist, incremental_mode), timeout_s=self.timeout_s)

    @property
    def incremental_modes(self) -> List[str]:
        """Modes reported by `john --list=inc-modes`, fetched once per runner"""
        if self._incremental_modes is None:
            self._require_bin()
            res = run_command([self.john_bin, "--list=inc-modes"], timeout_s=LIST_TIMEOUT, log_output=False)
            self._incremental_modes = [ln.strip() for ln in NEWLINE_RE.split(res.stdout) if ln.strip()]
        return self._incremental_modes

    def complete_incremental_mode(self, prefix: str = "") -> List[str]:
        prefix = (prefix or "").lower()
        return [m for m in self.incremental_modes if m.lower().startswith(prefix)]

# =============================================
# HASH EXTRACTION
# =============================================
@dataclass
class HashResult:
    hash: str
    hash_file_path: str


class HashExtractor:
    """Runs zip2john / pdf2john.py and writes labelled lines into a hash file"""

    def __init__(self, zip2john_bin: Optional[str] = None, pdf2john_script: Optional[str] = None,
                 python_bin: Optional[str] = None, timeout_s: int = HARD_TIMEOUT):
        self.zip2john_bin = zip2john_bin or ZIP2JOHN_BIN or resolve_bin("zip2john")
        self.pdf2john_script = pdf2john_script or PDF2JOHN_SCRIPT or resolve_bin("pdf2john.py", "pdf2john")
        self.python_bin = python_bin or sys.executable
        self.timeout_s = timeout_s

    def command_for(self, path: Path, fmt: FileFormat) -> List[str]:
        if fmt is FileFormat.PDF:
            if not self.pdf2john_script:
                raise ToolError("pdf2john not installed", "NOT_INSTALLED",
                                "add pdf2john.py to PATH or set JOHNUNLOCK_PDF2JOHN")
            return [self.python_bin, self.pdf2john_script, str(path)]
        if not self.zip2john_bin:
            raise ToolError("zip2john not installed", "NOT_INSTALLED",
                            "add zip2john to PATH or set JOHNUNLOCK_ZIP2JOHN")
        return [self.zip2john_bin, str(path)]

    def extract(self, path) -> str:
        path = Path(path)
        if not path.is_file():
            raise FileNotFoundError(f"Input file not found: {path}")
        fmt = detect_format(path)
        log.info(f"Extracting {fmt.name} hash from {path}")

        # zip2john reports archive details on stderr
        result = run_command(self.command_for(path, fmt), timeout_s=self.timeout_s,
                             log_output=fmt is not FileFormat.PDF,
                             fail_on_stderr=fmt is FileFormat.PDF)
        if not result.success:
            raise ToolError(f"Failed to extract {fmt.name} hash", "EXTRACT_FAILED", result.stderr.strip())

        hash_ = result.stdout.strip()
        if fmt is FileFormat.PDF:
            # some pdf2john builds print "<file>:$pdf$..."
            start = hash_.find("$pdf$")
            if start > 0:
                hash_ = hash_[start:]
        if not hash_:
            raise ToolError("Extracted hash is empty.", "EXTRACT_FAILED", str(path))
        return hash_

    def export(self, path, hash_file, append: bool = False) -> HashResult:
        hash_ = self.extract(path)
        line = encode_hash_line(hash_, detect_format(path), path)
        write_hash_line(hash_file, line, append)
        log.info(f" → {'appended to' if append else 'wrote'} {hash_file}")
        return HashResult(hash_, str(hash_file))

    def export_many(self, paths: Iterable, hash_file, append: bool = False) -> List[HashResult]:
        results = []
        for i, path in enumerate(progress(list(paths), desc="Exporting", leave=False)):
            results.append(self.export(path, hash_file, append=append or i > 0))
        return results

# =============================================
# FILE UNLOCKING
# =============================================
def unlock_pdf(record: UnlockRecord):
    try:
        with pikepdf.open(record.original_path, password=password_bytes(record.password)) as pdf:
            pdf.save(record.target_path, encryption=False)
    except pikepdf.PasswordError as e:
        raise UnlockError(f"Wrong password for PDF {record.original_path}") from e
    except pikepdf.PdfError as e:
        raise UnlockError(f"Failed to save unlocked PDF {record.target_path}: {e}") from e

def unlock_zip(record: UnlockRecord):
    # pyzipper reads both ZipCrypto and WinZip AES; the copy is written unencrypted
    target = Path(record.target_path)
    try:
        with pyzipper.AESZipFile(record.original_path, "r") as zin, \
                zipfile.ZipFile(target, "w", compression=zipfile.ZIP_DEFLATED) as zout:
            zin.setpassword(password_bytes(record.password))
            for info in zin.infolist():
                copy = zipfile.ZipInfo(info.filename, date_time=info.date_time)
                copy.create_system = info.create_system
                copy.external_attr = info.external_attr
                copy.comment = info.comment
                if info.is_dir():
                    copy.compress_type = zipfile.ZIP_STORED
                    zout.writestr(copy, b"")
                    continue
                copy.compress_type = zipfile.ZIP_DEFLATED
                zout.writestr(copy, zin.read(info.filename))
            zout.comment = zin.comment
    except (RuntimeError, pyzipper.BadZipFile, zipfile.BadZipFile, zlib.error) as e:
        target.unlink(missing_ok=True)
        raise UnlockError(f"Failed to unlock ZIP {record.original_path}: {e}") from e

UNLOCKERS: Dict[FileFormat, Callable[[UnlockRecord], None]] = {
    FileFormat.PDF: unlock_pdf,
    FileFormat.PKZIP: unlock_zip,
}

def unlock_file(record: UnlockRecord):
    unlocker = UNLOCKERS.get(record.format)
    if unlocker is None:
        raise UnlockError(f"Unsupported file format for unlocking: {record.format.name}")
    Path(record.target_path).parent.mkdir(parents=True, exist_ok=True)
    parallel_log(f"Unlocking {record.format.name}: {record.original_path} → {record.target_path}")
    unlocker(record)

# =============================================
# CORRELATION
# =============================================
@dataclass
class UnlockFailure:
    record: UnlockRecord
    error: str


@dataclass
class CrackResult:
    raw_output: str
    pot_path: str
    groups: List[FormatGroup]
    unlocked: List[UnlockRecord] = field(default_factory=list)
    failures: List[UnlockFailure] = field(default_factory=list)

    @property
    def records(self) -> List[UnlockRecord]:
        return [r for group in self.groups for r in group.records]


def unlock_records(records: List[UnlockRecord], unlocker: Callable[[UnlockRecord], None] = unlock_file,
                   max_workers: int = MAX_WORKERS) -> Tuple[List[UnlockRecord], List[UnlockFailure]]:
    """
    Unlock every record independently. A failing record is reported and the
    rest of the batch carries on. Results keep the input order.
    """
    outcomes: Dict[int, Optional[str]] = {}

    def attempt(i: int, record: UnlockRecord):
        try:
            unlocker(record)
        except (JohnUnlockError, OSError) as e:
            parallel_log(f"Failed to unlock {record.original_path}: {e}", logging.ERROR)
            return i, str(e)
        return i, None

    if max_workers and max_workers > 1 and len(records) > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = [executor.submit(attempt, i, r) for i, r in enumerate(records)]
            for future in progress(as_completed(futures), total=len(futures), desc="Unlocking", leave=False):
                i, error = future.result()
                outcomes[i] = error
    else:
        for i, record in enumerate(progress(records, desc="Unlocking", leave=False)):
            outcomes[i] = attempt(i, record)[1]

    unlocked = [r for i, r in enumerate(records) if outcomes[i] is None]
    failures = [UnlockFailure(r, outcomes[i]) for i, r in enumerate(records) if outcomes[i] is not None]
    return unlocked, failures

def correlate_output(output: str, hash_file, pot_path, output_dir=None) -> List[FormatGroup]:
    """Offline correlation of a previously captured john run"""
    index = decode_hash_file(hash_file)
    pot = load_pot_store(pot_path)
    return parse_john_output(output, index, pot, output_dir)

def crack_and_unlock(hash_file, runner: JohnRunner, wordlist=None, incremental_mode: Optional[str] = None,
                     output_dir=None, refresh_pot: bool = False, max_workers: int = MAX_WORKERS,
                     unlocker: Callable[[UnlockRecord], None] = unlock_file) -> CrackResult:
    hash_file = Path(hash_file)
    if not hash_file.is_file():
        raise FileNotFoundError(f"Hash file not found: {hash_file}")
    if output_dir:
        Path(output_dir).mkdir(parents=True, exist_ok=True)
    if refresh_pot:
        clear_pot_store(runner.pot_path)

    log.info("Phase 1/3: Decoding hash file...")
    index = decode_hash_file(hash_file)

    log.info("Phase 2/3: Cracking with john...")
    result = runner.crack(hash_file, wordlist=wordlist, incremental_mode=incremental_mode)
    if not result.success:
        raise ToolError(f"john failed (exit code {result.returncode})", "JOHN_FAILED", result.stderr.strip())
    pot = load_pot_store(runner.pot_path)
    groups = parse_john_output(result.stdout, index, pot, output_dir)

    records = [r for group in groups for r in group.records]
    log.info(f"Phase 3/3: Unlocking {len(records):,} file(s)...")
    unlocked, failures = unlock_records(records, unlocker, max_workers)
    return CrackResult(
        raw_output=result.stdout,
        pot_path=str(runner.pot_path),
        groups=groups,
        unlocked=unlocked,
        failures=failures,
    )

# =============================================
# CLI
# =============================================
def log_groups(groups: List[FormatGroup]):
    for group in groups:
        log.info(f"{group.format.name} [{group.encryption_algorithms}]: "
                 f"{group.hash_count} hash(es), {group.salt_count} salt(s), "
                 f"{len(group.cracked_by_path)} cracked")
        for record in group.records:
            log.info(f"  {record.original_path} → {record.password!r} ({record.target_path})")

def cmd_export(args) -> int:
    extractor = HashExtractor(zip2john_bin=args.zip2john, pdf2john_script=args.pdf2john)
    results = extractor.export_many(args.input, args.output, append=args.append)
    log.info(f"Exported {len(results):,} hash(es) to {args.output}")
    return EXIT_OK

def cmd_crack(args) -> int:
    runner = JohnRunner(args.john, pot_path=args.pot, timeout_s=args.timeout)
    incremental = args.incremental if args.incremental not in (None, True) else None
    if incremental and incremental.lower() not in (m.lower() for m in runner.complete_incremental_mode(incremental)):
        raise ToolError(f"Unknown incremental mode: {incremental}", "INVALID_PARAMS",
                        ", ".join(runner.incremental_modes))
    result = crack_and_unlock(
        args.input, runner,
        wordlist=args.wordlist,
        incremental_mode=incremental,
        output_dir=args.output,
        refresh_pot=args.refresh_pot,
        max_workers=args.max_workers,
    )
    log_groups(result.groups)
    log.info(f"Unlocked {len(result.unlocked):,} file(s), {len(result.failures):,} failure(s). "
             f"Pot file: {result.pot_path}")
    return EXIT_PARTIAL if result.failures else EXIT_OK

def cmd_modes(args) -> int:
    runner = JohnRunner(args.john)
    for mode in runner.complete_incremental_mode(args.prefix):
        print(mode)
    return EXIT_OK

def cmd_parse(args) -> int:
    output = Path(args.output_file).read_text(encoding="utf-8", errors="replace")
    groups = correlate_output(output, args.input, args.pot, args.output)
    log_groups(groups)
    return EXIT_OK

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="JohnUnlock — export, crack and unlock PDF/ZIP files with john")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging (parser decisions, tool output)")
    parser.add_argument("--john", default=None, help="Path to the john executable (default: PATH / JOHNUNLOCK_JOHN)")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("export", help="Extract hashes from locked files into a hash file")
    p.add_argument("-i", "--input", nargs="+", required=True, help="PDF or ZIP file(s)")
    p.add_argument("-o", "--output", type=Path, required=True, help="Hash file to write")
    p.add_argument("--append", action="store_true", help="Append instead of overwriting the hash file")
    p.add_argument("--zip2john", default=None, help="Path to zip2john")
    p.add_argument("--pdf2john", default=None, help="Path to pdf2john.py")
    p.set_defaults(func=cmd_export)

    p = sub.add_parser("crack", help="Crack a hash file and save unlocked copies")
    p.add_argument("-i", "--input", type=Path, required=True, help="Hash file")
    mode = p.add_mutually_exclusive_group()
    mode.add_argument("-w", "--wordlist", type=Path, help="Wordlist file")
    mode.add_argument("--incremental", nargs="?", const=True, default=None, metavar="MODE",
                      help="Incremental mode, optionally named (see 'modes')")
    p.add_argument("--pot", type=Path, default=DEFAULT_POT_PATH, help=f"Pot file (default: {DEFAULT_POT_PATH})")
    p.add_argument("--refresh-pot", action="store_true", help="Delete the pot file before cracking")
    p.add_argument("-o", "--output", type=Path, default=None, help="Directory for unlocked files")
    p.add_argument("--max-workers", type=int, default=MAX_WORKERS,
                   help=f"Maximum number of parallel unlock workers (default: {MAX_WORKERS})")
    p.add_argument("--timeout", type=int, default=HARD_TIMEOUT, help="john timeout in seconds")
    p.set_defaults(func=cmd_crack)

    p = sub.add_parser("modes", help="List john incremental modes")
    p.add_argument("prefix", nargs="?", default="", help="Only modes starting with this prefix")
    p.set_defaults(func=cmd_modes)

    p = sub.add_parser("parse", help="Correlate a saved john output with a hash file")
    p.add_argument("-i", "--input", type=Path, required=True, help="Hash file")
    p.add_argument("--output-file", type=Path, required=True, help="Captured john stdout")
    p.add_argument("--pot", type=Path, default=DEFAULT_POT_PATH, help="Pot file")
    p.add_argument("-o", "--output", type=Path, default=None, help="Directory unlocked files would go to")
    p.set_defaults(func=cmd_parse)
    return parser

def main(argv: Optional[List[str]] = None) -> int:
    signal.signal(signal.SIGINT, sigint_handler)
    args = build_parser().parse_args(argv)
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)
    try:
        return args.func(args)
    except (JohnUnlockError, FileNotFoundError) as e:
        log.error(str(e))
        return EXIT_ERROR

if __name__ == "__main__":
    sys.exit(main())
