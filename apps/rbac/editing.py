"""
Staged edit sessions for the permission matrices.

An administrator loads a matrix, toggles cells into ``pending_state`` and
then either commits (row by row, through the rule store) or cancels
(no storage access at all). ``committed_state`` only ever changes by
reloading from storage.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Hashable, Mapping, Tuple

from django.core.exceptions import ObjectDoesNotExist, ValidationError as DjangoValidationError
from django.db import DatabaseError

from apps.core.exceptions import CommitInProgress, RuleStoreUnavailable
from apps.core.logging import SecurityLogger
from apps.rbac.engine import Effect
from apps.rbac.store import RuleStore

logger = logging.getLogger(__name__)

CELL_ERRORS = (DatabaseError, ValueError, ObjectDoesNotExist, DjangoValidationError)


@dataclass(frozen=True)
class CommitResult:
    succeeded: Tuple[Hashable, ...] = ()
    failed: Mapping[Hashable, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


class StagedEditSession:
    """
    Base class for an editing session bound to one rule surface.

    Subclasses define the value cycle (first element is the unset value)
    and how to load and write cells.
    """

    surface = ''
    cycle: Tuple[Any, ...] = ()

    def __init__(self, user=None, request=None):
        self.user = user
        self.request = request
        self.committed_state: Dict[Hashable, Any] = {}
        self.pending_state: Dict[Hashable, Any] = {}
        self._committing = False
        self.reload()

    @property
    def unset(self):
        return self.cycle[0]

    @property
    def scope(self) -> str:
        raise NotImplementedError

    def _load(self) -> Dict[Hashable, Any]:
        raise NotImplementedError

    def _write(self, cell, value) -> None:
        raise NotImplementedError

    def reload(self) -> None:
        """Replace committed_state with what storage holds now."""
        try:
            self.committed_state = dict(self._load())
        except DatabaseError as e:
            raise RuleStoreUnavailable() from e

    def get_effective_value(self, cell):
        if cell in self.pending_state:
            return self.pending_state[cell]
        return self.committed_state.get(cell, self.unset)

    def toggle(self, cell):
        """Advance the cell to the next value in the cycle and stage it."""
        current = self.get_effective_value(cell)
        value = self.cycle[(self.cycle.index(current) + 1) % len(self.cycle)]
        self.pending_state[cell] = value
        return value

    def set_value(self, cell, value):
        """Stage an explicit value for a cell."""
        # Identity check: 0 and 1 must not pass as False and True
        if not any(value is option for option in self.cycle):
            raise ValueError(f"{value!r} is not a valid value for {self.surface} cells")
        self.pending_state[cell] = value
        return value

    def is_modified(self, cell) -> bool:
        return cell in self.pending_state

    @property
    def pending_count(self) -> int:
        return len(self.pending_state)

    @property
    def has_pending_changes(self) -> bool:
        return bool(self.pending_state)

    @property
    def is_committing(self) -> bool:
        return self._committing

    def cancel(self) -> None:
        """Discard staged changes. Storage is not touched."""
        self.pending_state = {}

    def commit(self) -> CommitResult:
        """
        Write every pending cell, then reload committed state.

        Each cell is written independently; a failed cell does not stop the
        rest. Pending state is cleared and committed state reloaded even
        when some cells failed, so the session reflects storage.

        Returns:
            CommitResult with succeeded cells and {cell: error} for failures

        Raises:
            CommitInProgress: if called while a commit is already running
        """
        if self._committing:
            raise CommitInProgress()
        if not self.pending_state:
            return CommitResult()

        self._committing = True
        succeeded = []
        failed = {}
        try:
            for cell, value in list(self.pending_state.items()):
                try:
                    self._write(cell, value)
                except CELL_ERRORS as e:
                    logger.warning(
                        f"Failed to write {self.surface} cell",
                        extra={'scope': self.scope, 'cell': str(cell), 'error': str(e)}
                    )
                    failed[cell] = str(e)
                else:
                    succeeded.append(cell)

            self.pending_state = {}
            self.reload()
        finally:
            self._committing = False

        if failed:
            SecurityLogger.log_commit_failure(
                self.surface,
                self.scope,
                {str(cell): error for cell, error in failed.items()},
                user_id=getattr(self.user, 'pk', None),
            )

        logger.info(
            f"Committed {self.surface} changes",
            extra={'scope': self.scope, 'succeeded': len(succeeded), 'failed': len(failed)}
        )
        return CommitResult(succeeded=tuple(succeeded), failed=failed)


class RoleEffectEditSession(StagedEditSession):
    """Tri-state matrix for one dynamic role, keyed by permission id."""

    surface = 'dynamic_role'
    cycle = (Effect.UNSET, Effect.ALLOW, Effect.DENY)

    def __init__(self, role, user=None, request=None):
        self.role = role
        super().__init__(user=user, request=request)

    @property
    def scope(self) -> str:
        return str(self.role.pk)

    def _load(self):
        return RuleStore.load_dynamic_role_cells(self.role.pk)

    def set_value(self, cell, value):
        return super().set_value(cell, Effect(value))

    def _write(self, cell, value):
        RuleStore.set_dynamic_effect(self.role, cell, value, user=self.user, request=self.request)


class CompanyRoleEditSession(StagedEditSession):
    """
    Boolean matrix for one static role in one company, keyed by permission key.

    Cells cycle Unset -> Enabled -> Disabled -> Unset, where Unset removes the row.
    """

    surface = 'company_role'
    cycle = (None, True, False)

    def __init__(self, company, role, user=None, request=None):
        self.company = company
        self.role = role
        super().__init__(user=user, request=request)

    @property
    def scope(self) -> str:
        return f"{self.company.pk}:{self.role}"

    def _load(self):
        return RuleStore.load_role_rule_cells(self.company.pk, self.role)

    def _write(self, cell, value):
        RuleStore.set_role_rule(self.company, self.role, cell, value, user=self.user, request=self.request)
