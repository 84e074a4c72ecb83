"""Assignment of proxy models to configuration slots."""

from typing import Dict, Iterable, List, Sequence

from ..models.agents import AvailableModel, ModelSlot

# Substring preferences per slot, tried in order (case-insensitive).
SLOT_PREFERENCES = {
    ModelSlot.PRIMARY: ("opus", "sonnet"),
    ModelSlot.SECONDARY: ("sonnet",),
    ModelSlot.FAST: ("haiku", "flash"),
}


def _names(models: Iterable) -> List[str]:
    return [m.name if isinstance(m, AvailableModel) else str(m) for m in models]


def find_best_model(slot: ModelSlot, models: Sequence) -> str:
    """
    Pick the best matching model name for ``slot``.

    Accepts AvailableModel objects or plain names. Falls back to the first
    model when nothing matches, and to "" when the list is empty; callers
    treat "" as "keep the default".
    """
    names = _names(models)
    if not names:
        return ""

    for keyword in SLOT_PREFERENCES[slot]:
        for name in names:
            if keyword in name.lower():
                return name
    return names[0]


def is_default_slot(slots: Dict[ModelSlot, str], slot: ModelSlot) -> bool:
    return slots.get(slot) == AvailableModel.default_for(slot)


def resolve_slots(slots: Dict[ModelSlot, str], models: Sequence) -> Dict[ModelSlot, str]:
    """
    Assign models to all slots if the configuration still holds the defaults.

    A slot the user already changed is never overwritten. Returns a new mapping.
    """
    resolved = dict(slots)
    if not models or not is_default_slot(slots, ModelSlot.PRIMARY):
        return resolved

    for slot in ModelSlot:
        best = find_best_model(slot, models)
        if best and is_default_slot(slots, slot):
            resolved[slot] = best
    return resolved
