def generate_sort_name(full_name: str) -> str:
    """
    "Agatha Christie" -> "Christie, Agatha".

    Splits on the last space, which covers most Western names. Multi-part
    surnames ("Ursula K. Le Guin") and suffixes ("Jr.") come out wrong and
    single-word names are returned unchanged.
    """
    trimmed = full_name.strip()
    first, sep, last = trimmed.rpartition(' ')
    if not sep:
        return trimmed
    return f"{last}, {first.strip()}"
