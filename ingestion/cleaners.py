import re
import unicodedata


def normalize_text(s: str) -> str:
    s = unicodedata.normalize("NFKC", s)
    s = s.replace("\u00a0", " ")
    s = re.sub(r"[ \t]+", " ", s)
    s = re.sub(r"\s+\n", "\n", s)
    s = re.sub(r"\n{3,}", "\n\n", s)
    return s.strip()


def slug_to_title(slug: str) -> str:
    """
    Notion URLs end in `Some-Page-Title-<32 hex id>`; drop the id and dashes.
    """
    parts = slug.split("-")
    if len(parts) > 1 and re.fullmatch(r"[0-9a-f]{32}", parts[-1]):
        parts = parts[:-1]
    return normalize_text(" ".join(parts))
