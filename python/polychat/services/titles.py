"""Chat title generation from the first user message."""

PLACEHOLDER_TITLE = "New Chat"

MAX_TITLE_LENGTH = 50

SENTENCE_TERMINATORS = ".!?"


def generate_chat_title(content: str) -> str:
    """Derive a short chat title from message content.

    - Empty or blank content gives "New Chat"
    - Content of at most 50 characters is used as-is, whitespace-normalized
    - Otherwise the first sentence is used if it fits in 50 characters
    - Otherwise whole words are packed up to 50 characters
    - A first word too long to pack is cut to 47 characters plus "..."
    """
    clean = " ".join(content.split())
    if not clean:
        return PLACEHOLDER_TITLE

    if len(clean) <= MAX_TITLE_LENGTH:
        return clean

    cut = _first_terminator(clean)
    if cut is not None:
        sentence = clean[:cut].strip()
        if sentence and len(sentence) <= MAX_TITLE_LENGTH:
            return sentence

    title = ""
    for word in clean.split(" "):
        if len(title) + len(word) + 1 > MAX_TITLE_LENGTH:
            break
        title = f"{title} {word}" if title else word

    if title:
        return title

    return clean[: MAX_TITLE_LENGTH - 3] + "..."


def branch_title(base_title: str, model: str) -> str:
    """Title of a parallel branch: the base title annotated with the model."""
    return f"{base_title} ({model})"


def _first_terminator(text: str) -> int | None:
    positions = [text.find(t) for t in SENTENCE_TERMINATORS if t in text]
    return min(positions) if positions else None
