from typing import Iterable

EOL = "\r\n"


def format_reply(code: int, *lines: str) -> bytes:
    """Render a reply; every line but the last uses the ``code-text`` continuation form."""
    if not lines:
        lines = ("",)
    rendered = [f"{code}-{line}" for line in lines[:-1]]
    rendered.append(f"{code} {lines[-1]}")
    return (EOL.join(rendered) + EOL).encode('utf-8')


def format_features(features: Iterable[str]) -> bytes:
    lines = ["211-Extensions supported:"]
    lines.extend(f" {feature}" for feature in features)
    lines.append("211 End.")
    return (EOL.join(lines) + EOL).encode('utf-8')
