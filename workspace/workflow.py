"""
workspace/workflow.py -- The expert scheduling state machine.

    none --start--> polling --confirm--> confirmed --select--> registered
                                             |
                                             +--decline--> unavailable

    reset: confirmed | registered | unavailable --> polling

Every status change goes through one of the functions below; nothing else
calls WorkspaceStore.save_expert_state(). Each write is a compare-and-set on
the status the expert was read in, so two concurrent transitions on one
expert cannot both succeed.

Gates:
  - Candidate slots may be added or removed only while status is none or
    polling. The set is frozen from confirmation on.
  - Voting is open only while status is none or polling. unavailable counts
    as closed; a reset reopens it.

confirm() snapshots (id, date, time) of the chosen slots by value. Later slot
deletion does not touch the snapshot, and select_slot() checks membership
against the snapshot, not the live rows.

Every precondition failure raises InvalidTransition or ValidationFailure with
a message meant for the end user.
"""

from __future__ import annotations

import logging
from typing import Optional

from core.errors import InvalidTransition, NotFound, ValidationFailure
from workspace.models import Expert, ExpertStatus, PollingSlot, SlotSnapshot
from workspace.store import WorkspaceStore

logger = logging.getLogger("expertsman.workflow")

_OPEN_STATUSES = frozenset({ExpertStatus.none, ExpertStatus.polling})
_RESETTABLE = frozenset({ExpertStatus.confirmed, ExpertStatus.registered, ExpertStatus.unavailable})


def slots_editable(status: ExpertStatus) -> bool:
    return status in _OPEN_STATUSES


def voting_open(status: ExpertStatus) -> bool:
    return status in _OPEN_STATUSES


def _dedupe(ids: list[str]) -> list[str]:
    return list(dict.fromkeys(i for i in ids if i))


def _save(
    store: WorkspaceStore,
    expert: Expert,
    status: ExpertStatus,
    confirmed_slots: list[SlotSnapshot],
    selected_slot: Optional[SlotSnapshot],
) -> Expert:
    saved = store.save_expert_state(
        expert.id,
        status,
        expected_status=expert.status,
        confirmed_slots=confirmed_slots,
        selected_slot=selected_slot,
    )
    if not saved:
        raise InvalidTransition("The expert's status changed in the meantime. Reload and try again.")
    logger.info("Expert %s: %s -> %s", expert.id, expert.status.value, status.value)
    expert.status = status
    expert.confirmed_slots = list(confirmed_slots)
    expert.selected_slot = selected_slot
    return expert


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


def start_polling(store: WorkspaceStore, expert: Expert) -> Expert:
    """none -> polling. Requires at least one candidate slot.

    Calling it again while already polling is a no-op.
    """
    if expert.status == ExpertStatus.polling:
        return expert
    if expert.status != ExpertStatus.none:
        raise InvalidTransition(f"Polling cannot start while the expert is '{expert.status.value}'.")
    if store.count_slots(expert.id) == 0:
        raise InvalidTransition("Add at least one candidate slot before starting the poll.")
    return _save(store, expert, ExpertStatus.polling, [], None)


def confirm(store: WorkspaceStore, expert: Expert, slot_ids: list[str]) -> Expert:
    """polling -> confirmed, snapshotting the chosen candidate slots."""
    wanted = _dedupe(slot_ids)
    if not wanted:
        raise ValidationFailure("Select at least one slot to confirm.")
    if expert.status != ExpertStatus.polling:
        raise InvalidTransition(f"Slots can only be confirmed while polling (status is '{expert.status.value}').")

    slots = store.get_slots_by_ids(expert.id, wanted)
    if len(slots) != len(wanted):
        raise ValidationFailure("One or more selected slots do not belong to this expert.")
    snapshot = [s.snapshot() for s in slots]
    return _save(store, expert, ExpertStatus.confirmed, snapshot, None)


def select_slot(store: WorkspaceStore, expert: Expert, slot_id: str) -> Expert:
    """confirmed -> registered. slot_id must be one of the confirmed snapshot ids."""
    if not slot_id:
        raise ValidationFailure("Select a slot.")
    if expert.status != ExpertStatus.confirmed:
        raise InvalidTransition(f"A slot can only be selected after confirmation (status is '{expert.status.value}').")
    chosen = next((s for s in expert.confirmed_slots if s.id == slot_id), None)
    if chosen is None:
        raise ValidationFailure("The selected slot is not one of the confirmed options.")
    return _save(store, expert, ExpertStatus.registered, expert.confirmed_slots, chosen)


def decline(store: WorkspaceStore, expert: Expert) -> Expert:
    """confirmed -> unavailable. Slot fields are left as they are."""
    if expert.status != ExpertStatus.confirmed:
        raise InvalidTransition(
            f"Only a confirmed schedule can be declined (status is '{expert.status.value}')."
        )
    return _save(store, expert, ExpertStatus.unavailable, expert.confirmed_slots, expert.selected_slot)


def reset(store: WorkspaceStore, expert: Expert) -> Expert:
    """confirmed | registered | unavailable -> polling.

    Clears confirmed_slots and selected_slot. Candidate slots and votes stay.
    """
    if expert.status not in _RESETTABLE:
        raise InvalidTransition(f"Nothing to reset while the expert is '{expert.status.value}'.")
    return _save(store, expert, ExpertStatus.polling, [], None)


# ---------------------------------------------------------------------------
# Gated mutations
# ---------------------------------------------------------------------------


def add_slot(store: WorkspaceStore, expert: Expert, date: str, time: str) -> PollingSlot:
    if not slots_editable(expert.status):
        raise InvalidTransition("Candidate slots are frozen once the schedule is confirmed.")
    slot = PollingSlot(expert_id=expert.id, date=date, time=time)
    slot.id = store.add_slot(slot)
    return slot


def remove_slot(store: WorkspaceStore, expert: Expert, slot_id: str) -> None:
    if not slots_editable(expert.status):
        raise InvalidTransition("Candidate slots are frozen once the schedule is confirmed.")
    if not store.delete_slot(expert.id, slot_id):
        raise NotFound("Slot not found.")


def check_votes(store: WorkspaceStore, expert: Expert, slot_ids: list[str]) -> list[str]:
    """Return slot_ids deduplicated if a vote for them is acceptable right now.

    Raises InvalidTransition when voting is closed and ValidationFailure when
    any id is not one of this expert's candidate slots. Writes nothing, so the
    vote route runs it before a voter password is established.
    """
    if not voting_open(expert.status):
        raise InvalidTransition("Voting is closed for this expert.")
    wanted = _dedupe(slot_ids)
    if wanted and len(store.get_slots_by_ids(expert.id, wanted)) != len(wanted):
        raise ValidationFailure("One or more slots do not belong to this expert.")
    return wanted


def submit_votes(store: WorkspaceStore, expert: Expert, voter_name: str, slot_ids: list[str]) -> list[str]:
    """Replace everything voter_name has voted for on this expert with slot_ids.

    An empty list withdraws the voter's responses. Returns the recorded ids.
    The write re-checks the status in its own transaction, so a vote racing
    a confirm cannot land after voting closed.
    """
    wanted = check_votes(store, expert, slot_ids)
    if not store.replace_votes(expert.id, voter_name, wanted, open_statuses=_OPEN_STATUSES):
        raise InvalidTransition("Voting is closed for this expert.")
    return wanted
