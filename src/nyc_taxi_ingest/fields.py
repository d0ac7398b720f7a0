"""Split one physical CSV line into field values (RFC-4180 style)."""


def _finish(segments: list[tuple[str, bool]]) -> str:
    # Whitespace is trimmed only where it lies outside quotes.
    if not segments:
        return ""
    texts = [text for text, _ in segments]
    if not segments[0][1]:
        texts[0] = texts[0].lstrip()
    if not segments[-1][1]:
        texts[-1] = texts[-1].rstrip()
    return "".join(texts)


def split_fields(line: str, delimiter: str = ",", quote: str = '"', escape: str = '"') -> list[str]:
    """Split ``line`` into fields.

    Inside quotes a doubled quote becomes one literal quote and a lone quote
    closes the quoted section; when ``escape`` differs from ``quote``, an
    escape character followed by a quote or another escape emits that
    character literally. Outside quotes ``delimiter`` ends the field.

    Unquoted text is whitespace-trimmed, quoted content is kept verbatim.

    Examples
    --------
    >>> split_fields('a, "b,c" ,x')
    ['a', 'b,c', 'x']
    >>> split_fields("a,'say ''hi'''", quote="'", escape="'")
    ['a', "say 'hi'"]
    """
    fields: list[str] = []
    segments: list[tuple[str, bool]] = []
    chars: list[str] = []
    in_quote = False
    i = 0
    n = len(line)

    while i < n:
        ch = line[i]
        nxt = line[i + 1] if i + 1 < n else ""

        if in_quote:
            if escape != quote and ch == escape and nxt in (quote, escape):
                chars.append(nxt)
                i += 2
                continue
            if ch == quote:
                if nxt == quote:
                    chars.append(quote)
                    i += 2
                    continue
                segments.append(("".join(chars), True))
                chars = []
                in_quote = False
            else:
                chars.append(ch)
        elif ch == quote:
            if chars:
                segments.append(("".join(chars), False))
                chars = []
            in_quote = True
        elif ch == delimiter:
            if chars:
                segments.append(("".join(chars), False))
                chars = []
            fields.append(_finish(segments))
            segments = []
        else:
            chars.append(ch)
        i += 1

    if chars or in_quote:
        segments.append(("".join(chars), in_quote))
    fields.append(_finish(segments))
    return fields
