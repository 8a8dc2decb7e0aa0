from collections.abc import Sequence


def text_for_playbook(
    name: str, description: str, tags: Sequence[str], steps: Sequence[str]
) -> str:
    """Concatenate playbook fields into the text that gets embedded.

    Used for both indexing and queries so the representation stays consistent.
    """
    parts = []
    if name:
        parts.append(name)
    if description:
        parts.append(description)
    if tags:
        parts.append(f"tags: {', '.join(tags)}")
    actions = [s for s in steps if s]
    if actions:
        parts.append(f"steps: {'; '.join(actions)}")
    return "\n".join(parts)
