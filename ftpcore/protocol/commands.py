import logging
import time
from typing import Callable, Dict, Iterable, List

from ftpcore.protocol.command_parser import Command
from ftpcore.protocol.data_channel import format_pasv_address
from ftpcore.protocol.errors import (
    AlreadyExists,
    BadParameters,
    BadSequence,
    FTPError,
    IOFailure,
    NoDataConnection,
    NotFound,
    ParameterNotImplemented,
)
from ftpcore.protocol.path_resolver import parent_path, resolve_path
from ftpcore.protocol.replies import format_features
from ftpcore.storage.file_store import DirEntry

FEATURES = ("MLSD", "SIZE", "MDTM")


def format_list_entry(entry: DirEntry) -> str:
    perm = "drwxr-xr-x" if entry.is_dir else "-rw-r--r--"
    time_str = time.strftime("%b %d %H:%M", time.localtime(entry.modified))
    return f"{perm}   1 ftp      ftp      {entry.size:>12} {time_str} {entry.name}"


def format_mlsd_entry(entry: DirEntry) -> str:
    if entry.is_dir:
        return f"Type=dir; {entry.name}"
    return f"Type=file;Size={entry.size}; {entry.name}"


def render_lines(lines: Iterable[str]) -> bytes:
    # undecodable on-disk names go back out as their original bytes
    return ''.join(f"{line}\r\n" for line in lines).encode('utf-8', errors='surrogateescape')


class CommandDispatcher:
    """Verb table for an authenticated session.

    Handlers answer on the control channel themselves and signal failures
    by raising FTPError; ``dispatch`` turns those into replies so nothing
    escapes to the scheduler.
    """

    def __init__(self, machine):
        self.machine = machine
        self.logger = logging.getLogger('ftpd.commands')

        self.handlers: Dict[str, Callable[[Command], None]] = {
            'ABOR': self.ftp_abor,
            'CDUP': self.ftp_cdup,
            'XCUP': self.ftp_cdup,
            'CWD': self.ftp_cwd,
            'XCWD': self.ftp_cwd,
            'DELE': self.ftp_dele,
            'FEAT': self.ftp_feat,
            'LIST': self.ftp_list,
            'MDTM': self.ftp_mdtm,
            'MKD': self.ftp_mkd,
            'XMKD': self.ftp_mkd,
            'MLSD': self.ftp_mlsd,
            'MODE': self.ftp_mode,
            'NLST': self.ftp_nlst,
            'NOOP': self.ftp_noop,
            'PASS': self.ftp_logged_in,
            'PASV': self.ftp_pasv,
            'PORT': self.ftp_port,
            'PWD': self.ftp_pwd,
            'XPWD': self.ftp_pwd,
            'QUIT': self.ftp_quit,
            'RETR': self.ftp_retr,
            'RMD': self.ftp_rmd,
            'XRMD': self.ftp_rmd,
            'RNFR': self.ftp_rnfr,
            'RNTO': self.ftp_rnto,
            'SITE': self.ftp_site,
            'SIZE': self.ftp_size,
            'STOR': self.ftp_stor,
            'STRU': self.ftp_stru,
            'SYST': self.ftp_syst,
            'TYPE': self.ftp_type,
            'USER': self.ftp_logged_in,
        }

    @property
    def session(self):
        return self.machine.session

    @property
    def store(self):
        return self.machine.file_store

    @property
    def data(self):
        return self.machine.data_channel

    def reply(self, code: int, *lines: str):
        self.machine.reply(code, *lines)

    def resolve(self, parameter: str) -> str:
        return resolve_path(parameter, self.session.cwd, self.machine.max_path)

    def dispatch(self, command: Command) -> bool:
        """Run the handler for ``command``; returns False for an unknown verb."""
        # a rename source only survives until the very next command
        if command.verb != 'RNTO':
            self.session.rename_from = None

        handler = self.handlers.get(command.verb)
        if handler is None:
            self.reply(500, "Unknown command")
            return False

        try:
            handler(command)
        except FTPError as e:
            self.reply(e.code, e.message)
        except Exception as e:
            self.logger.exception(f"{command.verb} failed: {e}")
            self.reply(451, "Local error in processing")
        return True

    # -- access control ------------------------------------------------

    def ftp_logged_in(self, command: Command):
        raise BadSequence("Already logged in")

    def ftp_pwd(self, command: Command):
        self.reply(257, f'"{self.session.cwd}" is your current directory')

    def ftp_cwd(self, command: Command):
        if command.params == '.':
            self.ftp_pwd(command)
            return

        path = self.resolve(command.params)
        if not self.store.is_dir(path):
            raise NotFound(f"Can't change directory to {command.params}")

        self.session.cwd = path
        self.reply(250, f"Ok. Current directory is {path}")

    def ftp_cdup(self, command: Command):
        cwd = self.session.cwd
        if cwd != '/':
            parent = parent_path(cwd)
            if not self.store.is_dir(parent):
                self.logger.warning(f"CDUP: parent {parent} vanished, moving to root")
                parent = '/'
            self.session.cwd = parent
        self.reply(250, f"Ok. Current directory is {self.session.cwd}")

    def ftp_quit(self, command: Command):
        self.reply(221, "Goodbye")
        self.machine.end_session("quit")

    # -- transfer parameters -------------------------------------------

    def ftp_mode(self, command: Command):
        if command.params.upper() != 'S':
            raise ParameterNotImplemented("Only S(tream) is supported")
        self.reply(200, "S Ok")

    def ftp_stru(self, command: Command):
        if command.params.upper() != 'F':
            raise ParameterNotImplemented("Only F(ile) is supported")
        self.reply(200, "F Ok")

    def ftp_type(self, command: Command):
        type_code = ' '.join(command.params.upper().split())
        if type_code in ('A', 'A N'):
            self.session.transfer_type = 'A'
            self.reply(200, "TYPE is now ASCII")
        elif type_code in ('I', 'L 8'):
            self.session.transfer_type = 'I'
            self.reply(200, "TYPE is now 8-bit binary")
        else:
            raise ParameterNotImplemented("Unknown TYPE")

    def ftp_pasv(self, command: Command):
        port = self.data.passive()
        try:
            address = format_pasv_address(self.machine.advertised_host(), port)
        except ValueError as e:
            self.logger.error(f"PASV: {e}")
            self.data.teardown()
            raise NoDataConnection("Can't open data connection")
        self.reply(227, f"Entering Passive Mode ({address}).")

    def ftp_port(self, command: Command):
        self.data.set_active(command.params)
        self.reply(200, "PORT command successful")

    # -- service commands ----------------------------------------------

    def ftp_abor(self, command: Command):
        self.machine.engine.abort()
        self.data.teardown()
        self.reply(226, "Data connection closed")

    def ftp_dele(self, command: Command):
        if not command.params:
            raise BadParameters("No file name")
        path = self.resolve(command.params)
        if not self.store.exists(path):
            raise NotFound(f"File {command.params} not found")
        try:
            self.store.remove(path)
        except OSError as e:
            self.logger.error(f"DELE {path}: {e}")
            raise IOFailure(f"Can't delete {command.params}")
        self.reply(250, f"Deleted {command.params}")

    def ftp_mkd(self, command: Command):
        if not command.params:
            raise BadParameters("No directory name")
        path = self.resolve(command.params)
        if self.store.exists(path):
            raise AlreadyExists(f'"{command.params}" directory already exists')
        try:
            self.store.mkdir(path)
        except OSError as e:
            self.logger.error(f"MKD {path}: {e}")
            raise IOFailure(f'Can\'t create "{command.params}"', code=550)
        self.reply(257, f'"{path}" created')

    def ftp_rmd(self, command: Command):
        if not command.params:
            raise BadParameters("No directory name")
        path = self.resolve(command.params)
        if not self.store.is_dir(path):
            raise NotFound(f"Directory {command.params} not found")
        try:
            self.store.rmdir(path)
        except OSError as e:
            self.logger.error(f"RMD {path}: {e}")
            raise IOFailure(f'Can\'t delete "{command.params}"', code=550)
        self.reply(250, f'"{command.params}" deleted')

    def ftp_rnfr(self, command: Command):
        if not command.params:
            raise BadParameters("No file name")
        path = self.resolve(command.params)
        if not self.store.exists(path):
            raise NotFound(f"File {command.params} not found")
        self.session.rename_from = path
        self.reply(350, "RNFR accepted - file exists, ready for destination")

    def ftp_rnto(self, command: Command):
        source = self.session.rename_from
        self.session.rename_from = None

        if source is None:
            raise BadSequence("Need RNFR before RNTO")
        if not command.params:
            raise BadParameters("No file name")

        path = self.resolve(command.params)
        if self.store.exists(path):
            raise AlreadyExists(f"{command.params} already exists", code=553)
        if not self.store.exists(source):
            raise NotFound(f"File {source} not found")
        try:
            self.store.rename(source, path)
        except OSError as e:
            self.logger.error(f"RNTO {source} -> {path}: {e}")
            raise IOFailure("Rename/move failure", code=451)
        self.reply(250, "File successfully renamed or moved")

    def ftp_retr(self, command: Command):
        if not command.params:
            raise BadParameters("No file name")
        path = self.resolve(command.params)
        if not self.store.exists(path) or self.store.is_dir(path):
            raise NotFound(f"File {command.params} not found")

        try:
            size = self.store.size(path)
            file = self.store.open_read(path)
        except OSError as e:
            self.logger.error(f"RETR {path}: {e}")
            raise IOFailure(f"Can't open {command.params}")

        try:
            connection = self.data.establish()
        except NoDataConnection:
            file.close()
            raise

        self.reply(150, f"Connected to port {self.data.data_port}", f"{size} bytes to download")
        self.machine.engine.begin_retrieve(path, file, connection)

    def ftp_stor(self, command: Command):
        if not command.params:
            raise BadParameters("No file name")
        path = self.resolve(command.params)
        if self.store.is_dir(path):
            raise IOFailure(f"Can't open/create {command.params}", code=451)

        connection = self.data.establish()
        try:
            file = self.store.open_write(path)
        except OSError as e:
            self.logger.error(f"STOR {path}: {e}")
            self.data.close()
            raise IOFailure(f"Can't open/create {command.params}", code=451)

        self.reply(150, f"Connected to port {self.data.data_port}")
        self.machine.engine.begin_store(path, file, connection)

    # -- listings ------------------------------------------------------

    def _listing_target(self, params: str) -> str:
        tokens = params.split(' ')
        while tokens and (not tokens[0] or tokens[0].startswith('-')):
            tokens.pop(0)
        argument = ' '.join(tokens)

        path = self.resolve(argument) if argument else self.session.cwd
        if not self.store.is_dir(path):
            raise NotFound(f"Can't open directory {argument or path}")
        return path

    def _send_listing(self, command: Command, render: Callable[[DirEntry], str],
                      count_dirs: bool, trailer: List[str]):
        path = self._listing_target(command.params)
        try:
            entries = self.store.list_dir(path)
        except OSError as e:
            self.logger.error(f"{command.verb} {path}: {e}")
            raise NotFound(f"Can't open directory {path}")

        connection = self.data.establish()
        self.reply(150, "Accepted data connection")

        try:
            connection.write(render_lines(render(entry) for entry in entries))
        except OSError as e:
            self.logger.error(f"{command.verb}: data connection failed: {e}")
            self.reply(426, "Transfer aborted")
            return
        finally:
            self.data.close()

        matches = sum(1 for entry in entries if count_dirs or not entry.is_dir)
        self.reply(226, *trailer, f"{matches} matches total")

    def ftp_list(self, command: Command):
        self._send_listing(command, format_list_entry, count_dirs=False, trailer=[])

    def ftp_nlst(self, command: Command):
        self._send_listing(command, lambda entry: entry.name, count_dirs=True, trailer=[])

    def ftp_mlsd(self, command: Command):
        self._send_listing(command, format_mlsd_entry, count_dirs=False, trailer=["options: -a -l"])

    # -- extensions ----------------------------------------------------

    def ftp_feat(self, command: Command):
        self.machine.send(format_features(FEATURES))

    def ftp_size(self, command: Command):
        if not command.params:
            raise BadParameters("No file name")
        path = self.resolve(command.params)
        try:
            size = self.store.size(path)
        except OSError:
            raise IOFailure(f"Can't open {command.params}")
        self.reply(213, str(size))

    def ftp_mdtm(self, command: Command):
        if not command.params:
            raise BadParameters("No file name")
        path = self.resolve(command.params)
        try:
            mtime = self.store.modified(path)
        except OSError:
            raise NotFound("Unable to retrieve time")
        self.reply(213, time.strftime("%Y%m%d%H%M%S", time.gmtime(mtime)))

    def ftp_syst(self, command: Command):
        self.reply(215, "UNIX Type: L8")

    def ftp_noop(self, command: Command):
        self.reply(200, "Zzz...")

    def ftp_site(self, command: Command):
        self.reply(500, f"Unknown SITE command {command.params}")
