"""Invoice status state machine implementation using the transitions library."""

import logging
from typing import Any, Callable, Optional

from transitions import Machine, MachineError

logger = logging.getLogger(__name__)


class BillStatus(str):
    """Invoice status constants matching the InvoiceStatus enum."""

    # Internal state for a record whose invoice_status is unset
    NOT_GENERATED = "not_generated"

    INVOICE_RECEIVE = "invoice_receive"
    INVOICE_INWARD = "invoice_inward"
    ACCOUNT_VERIFICATION = "account_verification"
    PH_SIGNATURE = "ph_signature"
    PORTAL_UPDATE = "portal_update"
    DELAYED = "delayed"
    ISSUE = "issue"

    @classmethod
    def stages(cls) -> list[str]:
        """Return the ordered approval stages."""
        return [
            cls.INVOICE_RECEIVE,
            cls.INVOICE_INWARD,
            cls.ACCOUNT_VERIFICATION,
            cls.PH_SIGNATURE,
            cls.PORTAL_UPDATE,
        ]

    @classmethod
    def exception_states(cls) -> list[str]:
        """Return exception states, reachable from anywhere."""
        return [cls.DELAYED, cls.ISSUE]

    @classmethod
    def targets(cls) -> list[str]:
        """Return every status a record can be advanced to."""
        return cls.stages() + cls.exception_states()

    @classmethod
    def all_states(cls) -> list[str]:
        """Return all machine states, including the unset state."""
        return [cls.NOT_GENERATED] + cls.targets()

    @classmethod
    def is_exception(cls, status: Optional[str]) -> bool:
        return status in cls.exception_states()


STATUS_STEPS = [
    {"id": BillStatus.INVOICE_RECEIVE, "label": "Invoice Received"},
    {"id": BillStatus.INVOICE_INWARD, "label": "Invoice Inward"},
    {"id": BillStatus.ACCOUNT_VERIFICATION, "label": "Accounts Verification"},
    {"id": BillStatus.PH_SIGNATURE, "label": "PH Signature"},
    {"id": BillStatus.PORTAL_UPDATE, "label": "Portal Update"},
]


def _status_value(status: Any) -> Optional[str]:
    if status is None:
        return None
    return getattr(status, "value", status)


def stage_index(status: Any) -> int:
    """
    Position of a status in the ordered stages.

    Exception states report index 0 however far the record had progressed;
    an unset status reports -1 (no stage highlighted).
    """
    value = _status_value(status)
    if not value or value == BillStatus.NOT_GENERATED:
        return -1
    if BillStatus.is_exception(value):
        return 0
    try:
        return BillStatus.stages().index(value)
    except ValueError:
        return -1


def progress_steps(status: Any) -> list[dict[str, Any]]:
    """Derive the progress bar for a status."""
    current = stage_index(status)
    return [
        {
            "id": step["id"],
            "label": step["label"],
            "completed": index <= current,
            "current": index == current,
            "next": index == current + 1,
        }
        for index, step in enumerate(STATUS_STEPS)
    ]


def progress_percent(status: Any) -> float:
    """Width of the active progress bar, 0-100."""
    current = stage_index(status)
    if current < 0:
        return 0.0
    return current / (len(STATUS_STEPS) - 1) * 100


class TransitionError(Exception):
    """Raised when an invoice status transition is not permitted."""

    def __init__(
        self,
        message: str,
        current_status: Optional[str],
        target_status: str,
        record_id: Optional[str] = None,
    ):
        self.current_status = current_status
        self.target_status = target_status
        self.record_id = record_id
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for JSON serialization."""
        return {
            "error": "TransitionError",
            "message": str(self),
            "current_status": self.current_status,
            "target_status": self.target_status,
            "record_id": self.record_id,
        }


def _trigger_for(target: str) -> str:
    return f"mark_{target}"


class BillStatusFSM:
    """
    Finite State Machine for a billing record's invoice status.

    States:
        - not_generated: no invoice status recorded yet
        - invoice_receive -> invoice_inward -> account_verification
          -> ph_signature -> portal_update: the ordered stages
        - delayed, issue: exception states

    By default any status may be set from any status. In strict mode:
        - exception states are reachable from anywhere
        - from not_generated or an exception state, any stage is allowed
        - from a stage, only the same or a later stage is allowed
    """

    def __init__(
        self,
        record_id: str,
        initial_status: Optional[str] = None,
        strict: bool = False,
        on_transition: Optional[Callable[[str, Optional[str], str], None]] = None,
    ):
        """
        Initialize the status machine.

        Args:
            record_id: Identifier of the billing record
            initial_status: Current invoice_status of the record (None if unset)
            strict: Enforce forward-only ordering of the stages
            on_transition: Optional callback called on each transition
                          with (record_id, source_status, dest_status)
        """
        self.record_id = record_id
        self.strict = strict
        self._on_transition = on_transition

        initial = _status_value(initial_status) or BillStatus.NOT_GENERATED
        if initial not in BillStatus.all_states():
            raise ValueError(f"Invalid initial status: {initial}")

        self.machine = Machine(
            model=self,
            states=BillStatus.all_states(),
            transitions=self.build_transitions(strict),
            initial=initial,
            auto_transitions=False,
            send_event=True,
            after_state_change=self._after_transition,
        )

    @staticmethod
    def build_transitions(strict: bool) -> list[dict[str, Any]]:
        """Build one trigger per target status."""
        transitions = []
        stages = BillStatus.stages()

        for target in BillStatus.targets():
            if not strict or BillStatus.is_exception(target):
                source: Any = "*"
            else:
                position = stages.index(target)
                source = (
                    [BillStatus.NOT_GENERATED]
                    + BillStatus.exception_states()
                    + stages[: position + 1]
                )
            transitions.append(
                {"trigger": _trigger_for(target), "source": source, "dest": target}
            )

        return transitions

    @property
    def current_status(self) -> Optional[str]:
        """Current invoice status, None while unset."""
        if self.state == BillStatus.NOT_GENERATED:  # type: ignore[attr-defined]
            return None
        return self.state  # type: ignore[attr-defined]

    @property
    def stage_index(self) -> int:
        return stage_index(self.current_status)

    def _after_transition(self, event: Any) -> None:
        source = event.transition.source
        dest = event.transition.dest

        logger.info(
            f"Billing record {self.record_id}: invoice status {source} -> {dest}"
        )

        if self._on_transition:
            self._on_transition(
                self.record_id,
                None if source == BillStatus.NOT_GENERATED else source,
                dest,
            )

    def can_advance(self, target: str) -> bool:
        """Check if the record can move to target from its current status."""
        may_method = getattr(self, f"may_{_trigger_for(target)}", None)
        if may_method:
            return may_method()
        return False

    def available_targets(self) -> list[str]:
        """Statuses reachable from the current status."""
        return [t for t in BillStatus.targets() if self.can_advance(t)]

    def advance(self, target: Any) -> dict[str, Any]:
        """
        Move the record to a target status.

        Args:
            target: Target status (string or InvoiceStatus)

        Returns:
            Dictionary with transition result

        Raises:
            TransitionError: If the target is unknown or not reachable
        """
        target = _status_value(target)
        previous = self.current_status

        if target not in BillStatus.targets():
            raise TransitionError(
                f"Unknown invoice status '{target}'",
                current_status=previous,
                target_status=str(target),
                record_id=self.record_id,
            )

        if not self.can_advance(target):
            raise TransitionError(
                f"Cannot move from '{previous or BillStatus.NOT_GENERATED}' "
                f"to '{target}'. Available: {self.available_targets()}",
                current_status=previous,
                target_status=target,
                record_id=self.record_id,
            )

        try:
            getattr(self, _trigger_for(target))()
        except MachineError as e:
            raise TransitionError(
                str(e),
                current_status=previous,
                target_status=target,
                record_id=self.record_id,
            ) from e

        return {
            "record_id": self.record_id,
            "previous_status": previous,
            "current_status": self.current_status,
        }

    def __repr__(self) -> str:
        return f"BillStatusFSM(record_id={self.record_id!r}, status={self.current_status!r})"
