"""Secondary relay uploads over FTP or SFTP.

Both transports are blocking; callers run them with ``asyncio.to_thread``.
Each upload checks whether the file already exists remotely (by name),
streams the local file without buffering it, and then verifies the
transfer finished.
"""

import errno
import ftplib
import logging
import posixpath
from pathlib import Path

import paramiko

from drover.schemas.ingest import RelayProtocol, RelayTarget

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT = 30
# FTP replies that mean the data connection closed after a full transfer
FTP_COMPLETE_CODES = ("226", "250")


class RelayError(RuntimeError):
    """A relay transfer did not complete."""


def _remote_path(target: RelayTarget, file_name: str) -> str:
    directory = target.remote_directory or "."
    return posixpath.join(directory, file_name)


# ------------------------------------------------------------------
# FTP
# ------------------------------------------------------------------


def _ftp_exists(ftp: ftplib.FTP, file_name: str) -> bool:
    try:
        names = ftp.nlst()
    except ftplib.error_perm as exc:
        # Some servers answer 550 for an empty directory listing
        if str(exc).startswith("550"):
            return False
        raise
    return any(posixpath.basename(name) == file_name for name in names)


def upload_via_ftp(source: Path, target: RelayTarget) -> bool:
    """Upload ``source`` over FTP (or FTP over TLS).

    Returns:
        True if the file was uploaded, False if it already existed remotely.

    Raises:
        RelayError: If the server did not confirm the transfer.
        ftplib.Error, OSError: On connection or protocol failures.
    """
    ftp: ftplib.FTP = ftplib.FTP_TLS() if target.secure else ftplib.FTP()
    ftp.connect(target.host, target.effective_port, timeout=CONNECT_TIMEOUT)
    try:
        ftp.login(target.username, target.password)
        if target.secure:
            ftp.prot_p()
        ftp.set_pasv(True)
        if target.remote_directory:
            ftp.cwd(target.remote_directory)

        if _ftp_exists(ftp, source.name):
            logger.info("Relay skipped, %s already on %s", source.name, target.host)
            return False

        with source.open("rb") as f:
            reply = ftp.storbinary(f"STOR {source.name}", f)
        if not reply.startswith(FTP_COMPLETE_CODES):
            raise RelayError(f"FTP upload of {source.name} not confirmed: {reply}")
        return True
    finally:
        try:
            ftp.quit()
        except ftplib.all_errors:
            ftp.close()


# ------------------------------------------------------------------
# SFTP
# ------------------------------------------------------------------


def _open_ssh_client(target: RelayTarget) -> paramiko.SSHClient:
    client = paramiko.SSHClient()
    client.load_system_host_keys()
    client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
    client.connect(
        hostname=target.host,
        port=target.effective_port,
        username=target.username or None,
        password=target.password or None,
        allow_agent=not target.password,
        look_for_keys=not target.password,
        timeout=CONNECT_TIMEOUT,
    )
    return client


def sftp_mkdirs(sftp: paramiko.SFTPClient, remote_dir: str) -> None:
    """Create ``remote_dir`` and any missing parents."""
    remote_dir = posixpath.normpath(remote_dir)
    if remote_dir in (".", "", "/"):
        return
    current = "/" if remote_dir.startswith("/") else "."
    for part in (p for p in remote_dir.split("/") if p):
        current = posixpath.join(current, part)
        try:
            sftp.stat(current)
            continue
        except IOError:
            pass
        try:
            sftp.mkdir(current)
        except IOError as exc:
            # Lost a race with another writer, or a mount we cannot stat
            if getattr(exc, "errno", None) not in (errno.EEXIST, errno.EACCES):
                sftp.stat(current)


def _sftp_exists(sftp: paramiko.SFTPClient, remote_path: str) -> bool:
    try:
        sftp.stat(remote_path)
    except IOError:
        return False
    return True


def upload_via_sftp(source: Path, target: RelayTarget) -> bool:
    """Upload ``source`` over SFTP, creating the remote directory if needed.

    Returns:
        True if the file was uploaded, False if it already existed remotely.

    Raises:
        RelayError: If the remote size does not match after the transfer.
        paramiko.SSHException, OSError: On connection or protocol failures.
    """
    client = _open_ssh_client(target)
    try:
        sftp = client.open_sftp()
        try:
            if target.remote_directory:
                sftp_mkdirs(sftp, target.remote_directory)
            remote_path = _remote_path(target, source.name)

            if _sftp_exists(sftp, remote_path):
                logger.info("Relay skipped, %s already on %s", source.name, target.host)
                return False

            local_size = source.stat().st_size
            with source.open("rb") as f:
                attrs = sftp.putfo(f, remote_path, file_size=local_size, confirm=True)
            if attrs.st_size != local_size:
                raise RelayError(
                    f"SFTP upload of {source.name} incomplete: "
                    f"{attrs.st_size} of {local_size} bytes"
                )
            return True
        finally:
            sftp.close()
    finally:
        client.close()


def relay_file(source: Path, target: RelayTarget) -> bool:
    """Upload ``source`` with the protocol selected by the target's scheme."""
    if target.protocol == RelayProtocol.SFTP:
        return upload_via_sftp(source, target)
    return upload_via_ftp(source, target)
