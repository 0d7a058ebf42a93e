"""Diffing of local and remote manifests into an action plan."""

import logging
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from enum import Enum

from ..utils import directory_key

logger = logging.getLogger(__name__)


class ActionKind(str, Enum):
    """Kinds of transfer action."""

    NEW = "new"
    """File exists locally only, upload it"""

    UPDATE = "update"
    """File exists on both sides with different content, upload it"""

    REMOVE = "remove"
    """File exists remotely only; removal needs explicit authorization"""


@dataclass(frozen=True)
class TransferAction:
    """One instruction to reconcile a single file."""

    kind: ActionKind
    """What to do with the file"""

    relative_path: str
    """Path relative to the output root"""

    @property
    def is_upload(self) -> bool:
        """Whether the action transfers the local file."""
        return self.kind in (ActionKind.NEW, ActionKind.UPDATE)


class ActionPlan(Mapping[str, list[TransferAction]]):
    """Transfer actions grouped by the directory of their path.

    Root-level files are grouped under ".". The plan is minimal: files
    whose digest matches on both sides do not appear at all.
    """

    def __init__(self, groups: dict[str, list[TransferAction]]):
        self._groups = groups

    def __getitem__(self, directory: str) -> list[TransferAction]:
        return self._groups[directory]

    def __iter__(self) -> Iterator[str]:
        return iter(self._groups)

    def __len__(self) -> int:
        return len(self._groups)

    def __repr__(self) -> str:
        return f"ActionPlan({self._groups!r})"

    @property
    def is_empty(self) -> bool:
        """True if nothing needs to be transferred or removed."""
        return not self._groups

    def directories(self) -> list[str]:
        """Directory keys, shortest first, ties broken alphabetically.

        String length approximates depth, so parents come before
        their children.
        """
        return sorted(self._groups, key=lambda d: (len(d), d))

    def actions(self) -> Iterator[TransferAction]:
        """Iterate over all actions in directory order."""
        for directory in self.directories():
            yield from self._groups[directory]

    def count(self, kind: ActionKind) -> int:
        """Number of actions of the given kind."""
        return sum(1 for action in self.actions() if action.kind == kind)

    def to_dict(self) -> dict[str, list[dict[str, str]]]:
        """Convert plan to a dictionary for JSON output."""
        return {
            directory: [
                {"action": a.kind.value, "path": a.relative_path}
                for a in self._groups[directory]
            ]
            for directory in self.directories()
        }


class DiffPlanner:
    """Computes which files must be transferred to bring the remote up to date.

    The local tree is authoritative. Every path found in either manifest
    ends up in exactly one category: reconciled (no action), NEW, UPDATE
    or REMOVE.

    Examples:
        >>> planner = DiffPlanner()
        >>> plan = planner.plan(local_manifest, remote_manifest)
        >>> for action in plan.actions():
        ...     print(action.kind.value, action.relative_path)
    """

    def plan(
        self,
        local: Mapping[str, str],
        remote: Mapping[str, str],
    ) -> ActionPlan:
        """Diff two manifests.

        Args:
            local: Local manifest (relative_path -> digest)
            remote: Remote manifest (relative_path -> digest)

        Returns:
            ActionPlan grouped by directory, actions sorted by path
        """
        remaining_remote = dict(remote)
        actions: list[TransferAction] = []

        for path in sorted(local):
            remote_digest = remaining_remote.pop(path, None)
            if remote_digest is None:
                actions.append(TransferAction(ActionKind.NEW, path))
            elif remote_digest != local[path]:
                actions.append(TransferAction(ActionKind.UPDATE, path))
            # else: reconciled, nothing to do

        # Whatever is left exists on the remote side only
        for path in sorted(remaining_remote):
            actions.append(TransferAction(ActionKind.REMOVE, path))

        groups: dict[str, list[TransferAction]] = {}
        for action in actions:
            groups.setdefault(directory_key(action.relative_path), []).append(action)

        logger.debug(
            "Planned %d action(s) in %d director%s",
            len(actions),
            len(groups),
            "y" if len(groups) == 1 else "ies",
        )
        return ActionPlan(groups)
