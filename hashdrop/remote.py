from __future__ import annotations

import logging
import shlex
import subprocess
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING, Protocol

from hashdrop.errors import RemoteCommandError, RemoteToolMissingError
from hashdrop.models import CommandResult, RemoteStat

if TYPE_CHECKING:
    from hashdrop.config import Host


logger = logging.getLogger(__name__)

SSH_EXECUTABLE = "ssh"
SCP_EXECUTABLE = "scp"
CONTROL_PATH = "~/.ssh/hashdrop-%r@%h:%p"


class RemoteSession(Protocol):
    """Operations the commands need from a remote site, all relative to `store_root`."""

    store_root: str

    def run_remote_command(self, command: str) -> CommandResult: ...

    def list_store_entries(self) -> list[str]: ...

    def has_bulk_stat(self) -> bool: ...

    def stat_all(self) -> dict[str, RemoteStat]: ...

    def stat_single(self, path: str) -> RemoteStat: ...

    def make_folder(self, folder: str) -> None: ...

    def remove_folder(self, folder: str) -> list[str]: ...

    def move(self, source: str, target: str) -> None: ...

    def adjust_group(self, folder: str, group: str) -> None: ...

    def upload_file(self, local_path: Path, relative_target: str, limit_kbits: int | None = None) -> None: ...


def _split_hostname(hostname: str) -> tuple[str, str | None]:
    if ":" in hostname and not hostname.startswith("["):
        host, port = hostname.rsplit(":", 1)
        return host, port
    return hostname, None


def quote_remote_path(path: str) -> str:
    """Shell-quote `path` for the remote shell, leaving a leading `~` to expand there."""
    if path == "~":
        return path
    if path.startswith("~/"):
        return "~/" + shlex.quote(path[2:])
    return shlex.quote(path)


def _parse_stat_line(line: str) -> tuple[str, RemoteStat]:
    path, size, mtime = line.rsplit(" ", 2)
    if path.startswith("./"):
        path = path[2:]
    return path, RemoteStat(size=int(size), mtime=int(float(mtime)))


class SshSession:
    """Remote site reached through the system OpenSSH client.

    Authentication (agent, keys, passwords) is left entirely to `ssh` and the
    user's OpenSSH configuration. Connections are multiplexed so that the
    many short commands issued per invocation reuse one TCP connection.
    """

    def __init__(self, host: "Host", *, log_commands: bool = False) -> None:
        self.host = host
        self.store_root = str(host.folder)
        self._log_commands = log_commands
        self._bulk_stat: bool | None = None

        hostname, port = _split_hostname(host.get_hostname())
        self._destination = f"{host.user}@{hostname}" if host.user else hostname
        self._port = port

    def _ssh_options(self, port_flag: str = "-p") -> list[str]:
        options = [
            "-o",
            "ControlMaster=auto",
            "-o",
            f"ControlPath={CONTROL_PATH}",
            "-o",
            "ControlPersist=60",
        ]
        if self._port:
            options.extend([port_flag, self._port])
        return options

    def run_remote_command(self, command: str) -> CommandResult:
        if self._log_commands:
            logger.debug("Remote command on %s: %s", self.host.alias, command)
        try:
            completed = subprocess.run(
                [SSH_EXECUTABLE, *self._ssh_options(), self._destination, command],
                capture_output=True,
                text=True,
                check=False,
            )
        except FileNotFoundError as exc:
            raise RemoteToolMissingError(f"local {SSH_EXECUTABLE}") from exc
        return CommandResult(
            exit_code=completed.returncode,
            stdout=completed.stdout,
            stderr=completed.stderr,
        )

    def _in_store(self, command: str) -> str:
        return f"cd {quote_remote_path(self.store_root)} && {command}"

    def _expect(self, operation: str, command: str) -> CommandResult:
        result = self.run_remote_command(command)
        if not result.ok:
            raise RemoteCommandError(operation, result.exit_code, result.stdout, result.stderr)
        return result

    def list_store_entries(self) -> list[str]:
        # an empty store makes the glob fail, which is not an error
        result = self.run_remote_command(self._in_store("ls -1rt -- */* 2>/dev/null || true"))
        if not result.ok:
            raise RemoteCommandError(
                "Listing remote files", result.exit_code, result.stdout, result.stderr
            )
        return [line for line in result.stdout.splitlines() if line]

    def has_bulk_stat(self) -> bool:
        if self._bulk_stat is None:
            probe = self.run_remote_command(
                self._in_store("find . -maxdepth 0 -exec stat --format=%n {} +")
            )
            self._bulk_stat = probe.ok
            logger.debug("Bulk stat available on %s: %s", self.host.alias, self._bulk_stat)
        return self._bulk_stat

    def stat_all(self) -> dict[str, RemoteStat]:
        result = self._expect(
            "Bulk stat of remote files",
            self._in_store(
                "find . -mindepth 2 -maxdepth 2 -type f "
                "-exec stat --printf='%n %s %Y\\n' {} +"
            ),
        )
        return dict(_parse_stat_line(line) for line in result.stdout.splitlines() if line)

    def stat_single(self, path: str) -> RemoteStat:
        quoted = shlex.quote(path)
        result = self._expect(
            f"Stat of {path}",
            self._in_store(
                f"stat -c '%n %s %Y' -- {quoted} 2>/dev/null "
                f"|| stat -f '%N %z %m' -- {quoted}"
            ),
        )
        _, stat = _parse_stat_line(result.stdout.strip())
        return stat

    def make_folder(self, folder: str) -> None:
        quoted = shlex.quote(folder)
        self._expect(
            f"Creating remote folder {folder}",
            self._in_store(f"[ -d {quoted} ] || mkdir -- {quoted}"),
        )

    def remove_folder(self, folder: str) -> list[str]:
        if len(PurePosixPath(folder).parts) != 1 or folder in {".", ".."}:
            raise ValueError(f"Refusing to remove non-store folder: {folder}")
        quoted = shlex.quote(folder)
        result = self._expect(
            f"Removing remote folder {folder}",
            self._in_store(f"[ -d {quoted} ] && rm -rvf -- {quoted}"),
        )
        return [line for line in result.stdout.splitlines() if line]

    def move(self, source: str, target: str) -> None:
        self._expect(
            f"Renaming {source}",
            self._in_store(f"mv -- {shlex.quote(source)} {shlex.quote(target)}"),
        )

    def adjust_group(self, folder: str, group: str) -> None:
        self._expect(
            f"Adjusting group of {folder}",
            self._in_store(f"chown -R :{shlex.quote(group)} -- {shlex.quote(folder)}"),
        )

    def upload_file(self, local_path: Path, relative_target: str, limit_kbits: int | None = None) -> None:
        target = f"{self.store_root.rstrip('/')}/{relative_target}"
        # scp resolves relative remote paths against the home directory
        if target.startswith("~/"):
            target = target[2:]
        args = [SCP_EXECUTABLE, *self._ssh_options(port_flag="-P"), "-q"]
        if limit_kbits:
            args.extend(["-l", str(limit_kbits)])
        args.extend([str(local_path), f"{self._destination}:{shlex.quote(target)}"])
        logger.debug("Uploading: %s -> %s", local_path, target)
        try:
            completed = subprocess.run(args, capture_output=True, text=True, check=False)
        except FileNotFoundError as exc:
            raise RemoteToolMissingError(f"local {SCP_EXECUTABLE}") from exc
        if completed.returncode != 0:
            raise RemoteCommandError(
                f"Uploading {local_path}", completed.returncode, completed.stdout, completed.stderr
            )
