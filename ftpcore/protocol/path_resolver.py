import re

from ftpcore.protocol.errors import PathTooLong

MAX_PATH = 255


def resolve_path(parameter: str, current_dir: str, max_length: int = MAX_PATH) -> str:
    """Resolve a client path argument against the working directory.

    Resolution is textual only: the file store is never consulted, so the
    result may name something that does not exist yet (MKD, STOR, RNTO).
    Backslashes are treated as separators, ``.`` and ``..`` segments are
    collapsed and a trailing separator is dropped unless the result is root.
    Raises PathTooLong when the encoded result exceeds ``max_length`` bytes.
    """
    parameter = parameter.replace('\\', '/')

    if not parameter or parameter == '/':
        return '/'

    if parameter.startswith('/'):
        full = parameter
    else:
        full = current_dir if current_dir.endswith('/') else current_dir + '/'
        full += parameter

    full = re.sub(r'/+', '/', full)

    parts = []
    for part in full.split('/'):
        if not part or part == '.':
            continue
        elif part == '..':
            if parts:
                parts.pop()
        else:
            parts.append(part)

    resolved = '/' + '/'.join(parts)

    if len(resolved.encode('utf-8')) > max_length:
        raise PathTooLong("Command line too long")
    return resolved


def parent_path(path: str) -> str:
    """Parent of an absolute path; the parent of root is root."""
    path = path.rstrip('/')
    if not path:
        return '/'
    head = path.rsplit('/', 1)[0]
    return head or '/'
