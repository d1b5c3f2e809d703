"""
Command screening for run_command.

This is a denylist in front of a real shell, not a sandbox: it catches the
destructive and escaping commands models actually produce and nothing more.
"""

import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

from loguru import logger

from devify.core.sandbox import PathSandbox

# (pattern, description), checked in order against the full command
DANGEROUS_PATTERNS: List[Tuple[str, str]] = [
    # Destructive filesystem operations
    (r"\brm\s+(-[a-z]*\s+)*-[a-z]*[rf][a-z]*\s+(-[a-z]*\s+)*[\"']?/(\s|$|\*|[\"'])", "Recursive deletion from root directory"),
    (r"\brm\s+(-[a-z]*\s+)*-[a-z]*[rf][a-z]*\s+(-[a-z]*\s+)*[\"']?~", "Recursive deletion of home directory"),
    (r"\brm\s+-[a-z]*r[a-z]*\s+\*", "Recursive deletion with wildcard"),
    (r"\brm\s+(-[a-z]*\s+)*--no-preserve-root", "Deletion with --no-preserve-root"),
    (r">\s*/dev/(sd|nvme|hd|disk)", "Direct disk write operation"),
    (r"\bdd\s+.*of=/dev/(sd|nvme|hd|disk)", "Disk overwrite with dd"),
    (r"\bmkfs(\.\w+)?\b", "Filesystem formatting"),
    (r"\bformat\s+[a-z]:", "Windows disk formatting"),
    (r"\b(rd|rmdir)\s+/s\s+/q\s+[a-z]:\\?\s*$", "Recursive deletion of a drive"),
    (r"\bdel\s+/[fsq].*\s[a-z]:\\", "Mass deletion on a drive"),
    (r"\bshred\b", "Secure file shredding"),
    (r"\bwipefs\b", "Filesystem signature wipe"),
    (r":\(\)\s*\{[^}]*\|[^}]*&[^}]*\};\s*:", "Fork bomb pattern"),
    (r"\bchmod\s+(-R\s+)?777\s+/", "World-writable permissions on system path"),
    (r"\bchown\s+-R\s+\S+\s+/(\s|$)", "Recursive ownership change from root"),
    # Privilege escalation
    (r"\bsudo\b", "Privilege escalation with sudo"),
    (r"\bsu\s+(-|root\b)", "Switching to root user"),
    (r"\bdoas\b", "Privilege escalation with doas"),
    (r"\brunas\s+/user:", "Privilege escalation with runas"),
    (r"\bpasswd\b", "Password change"),
    (r"\b(useradd|usermod|userdel|adduser)\b", "User account manipulation"),
    (r"\bnet\s+(user|localgroup)\b", "Windows account manipulation"),
    # Service, boot and registry manipulation
    (r"\bsystemctl\s+(stop|disable|mask|kill)\b", "Service manipulation"),
    (r"\bservice\s+\S+\s+stop\b", "Service manipulation"),
    (r"\b(shutdown|reboot|halt|poweroff)\b", "System shutdown or reboot"),
    (r"\breg(\.exe)?\s+(add|delete|import)\b", "Windows registry modification"),
    (r"\b(Set|Remove|New)-ItemProperty\b.*HK(LM|CU)", "Windows registry modification"),
    (r"\bsc(\.exe)?\s+(stop|delete|config)\b", "Windows service manipulation"),
    (r"\bcrontab\s+-r\b", "Removing all cron jobs"),
    (r"\bbcdedit\b", "Boot configuration change"),
    (r">\s*/etc/", "Writing to system configuration"),
    # Network exfiltration and remote execution
    (r"\b(curl|wget)\b[^|]*\|\s*(sudo\s+)?(ba|z|k)?sh\b", "Piping downloaded script to shell"),
    (r"\b(curl|wget)\b[^|]*\|\s*(python|perl|ruby|node)\b", "Piping downloaded script to interpreter"),
    (r"\bcurl\b.*(-d|--data|-F|--form|-T|--upload-file)\s+@", "Uploading local files with curl"),
    (r"\b(nc|ncat|netcat)\b.*\s-e\s", "Reverse shell with netcat"),
    (r"/dev/tcp/", "Raw TCP redirection"),
    (r"\bscp\b.*\s\S+@\S+:", "Copying files to a remote host"),
    (r"\brsync\b.*\s\S+@\S+:", "Syncing files to a remote host"),
    (r"\bInvoke-WebRequest\b.*\|\s*(iex|Invoke-Expression)\b", "Downloading and executing PowerShell"),
    (r"\b(iex|Invoke-Expression)\b\s*\(?\s*\(?New-Object\s+Net\.WebClient", "Downloading and executing PowerShell"),
    # Obfuscated or encoded execution
    (r"\bbase64\s+(-d|--decode)\b.*\|\s*(ba|z)?sh\b", "Executing base64-decoded payload"),
    (r"\bpowershell(\.exe)?\b.*\s-(e|enc|encodedcommand)\s", "Encoded PowerShell command"),
    (r"\beval\s+[\"']?\$\(", "Using eval with command substitution"),
    (r"\bexec\s+[\"']?\$\(", "Using exec with command substitution"),
    (r"\bpython[23]?\s+-c\s+.*\b(exec|eval)\s*\(.*(b64decode|decode\()", "Executing decoded Python payload"),
    (r"\\x[0-9a-f]{2}(\\x[0-9a-f]{2}){15,}", "Hex-encoded payload"),
    (r"\[(.*\]){100,}", "Excessive bracket expansion"),
    # Cryptocurrency miners
    (r"\b(xmrig|minerd|cpuminer|cgminer|bfgminer|ethminer|nbminer|t-rex|phoenixminer)\b", "Cryptocurrency miner"),
    (r"stratum\+tcp://", "Mining pool connection"),
]

# cd forms that would leave the project, anywhere in the command
ESCAPE_PATTERNS: List[Tuple[str, str]] = [
    (r"(^|[;&|]\s*|\s)cd\s+[\"']?(/|~)", "Changing to an absolute or home directory"),
    (r"(^|[;&|]\s*|\s)cd\s+[\"']?[a-z]:", "Changing to a drive-rooted directory"),
    (r"(^|[;&|]\s*|\s)cd\s+[\"']?\.\.([\\/]|[\"']?\s|[\"']?$|[;&|])", "Changing to a parent directory"),
    (r"(^|[;&|]\s*|\s)(pushd|Set-Location|chdir)\s+[\"']?(/|~|[a-z]:|\.\.)", "Changing to a directory outside the project"),
]

_COMPILED_DANGEROUS = [(re.compile(p, re.IGNORECASE), d) for p, d in DANGEROUS_PATTERNS]
_COMPILED_ESCAPE = [(re.compile(p, re.IGNORECASE), d) for p, d in ESCAPE_PATTERNS]

_CD_PREFIX = re.compile(r"^\s*cd\s+(\"[^\"]+\"|'[^']+'|[^\s&;|]+)\s*&&\s*(.+)$", re.DOTALL)
_BARE_CD = re.compile(r"^\s*cd(\s+(\"[^\"]+\"|'[^']+'|[^\s&;|]+))?\s*;?\s*$")


@dataclass
class CommandPlan:
    """What to actually run after screening."""
    command: str
    cwd: Path
    # Set for a bare "cd": nothing to run, just tell the model
    notice: Optional[str] = None


def is_blocked(command: str) -> Optional[str]:
    """
    Screen a command against the dangerous-operation signatures.

    Args:
        command: Full shell command as given by the model

    Returns:
        Reason naming the matched signature, or None when allowed
    """
    for pattern, description in _COMPILED_DANGEROUS:
        if pattern.search(command):
            return f"Dangerous command detected: {description}. Command: '{command[:100]}'"
    return None


def find_escape(command: str) -> Optional[str]:
    """Return a reason when the command changes directory out of the project."""
    for pattern, description in _COMPILED_ESCAPE:
        if pattern.search(command):
            return f"Blocked directory escape: {description}. Commands must stay inside the project directory."
    return None


class CommandGuard:
    """Screens shell commands and pins their working directory."""

    def __init__(self, sandbox: PathSandbox):
        self.sandbox = sandbox

    def plan(self, command: str) -> Tuple[Optional[CommandPlan], Optional[str]]:
        """
        Decide how (and whether) to run a command.

        A leading "cd <dir> &&" is taken off the command; <dir> is validated
        through the sandbox and becomes the working directory. Each command
        runs in a fresh process, so a bare "cd" does nothing and is reported
        as a notice instead of being executed.

        Args:
            command: Command from the tool call

        Returns:
            (CommandPlan, None) when allowed, (None, reason) when blocked
        """
        command = (command or "").strip()
        if not command:
            return None, "Missing required argument 'command'. Expected {\"command\": \"npm test\"}"

        reason = is_blocked(command)
        if reason:
            logger.warning(reason)
            return None, reason

        cwd = self.sandbox.root
        remainder = command

        bare = _BARE_CD.match(command)
        if bare:
            target = _unquote(bare.group(2) or ".")
            resolved, error = self.sandbox.resolve(target)
            if error:
                return None, f"Blocked directory escape: {error}"
            rel = self.sandbox.relative(resolved)
            notice = (
                f"'cd {target}' has no lasting effect: every command runs in a fresh shell "
                f"from the project root. Use 'cd {rel} && <command>' to run inside that directory."
            )
            return CommandPlan(command="", cwd=resolved, notice=notice), None

        prefix = _CD_PREFIX.match(command)
        if prefix:
            target = _unquote(prefix.group(1))
            resolved, error = self.sandbox.resolve(target)
            if error:
                logger.warning(f"Blocked cd target '{target}': {error}")
                return None, f"Blocked directory escape: {error}"
            if not resolved.is_dir():
                return None, f"Directory not found: {target}"
            cwd = resolved
            remainder = prefix.group(2).strip()

        reason = find_escape(remainder)
        if reason:
            logger.warning(reason)
            return None, reason

        return CommandPlan(command=remainder, cwd=cwd), None


def _unquote(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
        return value[1:-1]
    return value
