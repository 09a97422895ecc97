# gc.py -- Removing objects left unreachable by a rewrite
# Copyright (C) 2026 The excise authors
#
# SPDX-License-Identifier: Apache-2.0 OR GPL-2.0-or-later
# excise is dual-licensed under the Apache License, Version 2.0 and the GNU
# General Public License as published by the Free Software Foundation; version 2.0
# or (at your option) any later version. You can redistribute it and/or
# modify it under the terms of either of these two licenses.
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#
# You should have received a copy of the licenses; if not, see
# <http://www.gnu.org/licenses/> for a copy of the GNU General Public License
# and <http://www.apache.org/licenses/LICENSE-2.0> for a copy of the Apache
# License, Version 2.0.
#

"""Mark and sweep compaction of an object store.

After refs have been updated, the original history is still in the store.
Compaction marks everything reachable from the current refs (saved originals
under refs/original/ included) and sweeps the rest:

- unreachable loose objects are deleted
- packs that hold unreachable objects have their reachable objects written
  out loose and are then removed

Packs that hold only reachable objects are left alone.
"""

__all__ = [
    "CompactStats",
    "RefsNotUpdated",
    "compact",
    "find_unreachable_objects",
]

import logging
from dataclasses import dataclass, field

from .object_store import BaseObjectStore
from .objects import ObjectID
from .refs import RefsContainer
from .rewrite import RewriteContext
from .walk import find_reachable_objects

logger = logging.getLogger(__name__)


class RefsNotUpdated(Exception):
    """Compaction was requested before a rewrite's refs were updated."""


@dataclass
class CompactStats:
    """Statistics from a compaction run."""

    reachable_objects: int = 0
    pruned_objects: set[ObjectID] = field(default_factory=set)
    bytes_freed: int = 0
    exploded_objects: int = 0
    packs_before: int = 0
    packs_after: int = 0
    loose_objects_before: int = 0
    loose_objects_after: int = 0

    def format(self) -> str:
        return (
            f"Reachable objects:    {self.reachable_objects}\n"
            f"Objects removed:      {len(self.pruned_objects)}\n"
            f"Bytes freed:          {self.bytes_freed}\n"
            f"Objects unpacked:     {self.exploded_objects}\n"
            f"Packs:                {self.packs_before} -> {self.packs_after}\n"
            f"Loose objects:        {self.loose_objects_before} -> "
            f"{self.loose_objects_after}\n"
        )


def find_unreachable_objects(
    store: BaseObjectStore, refs: RefsContainer
) -> tuple[set[ObjectID], set[ObjectID]]:
    """Split the objects of a store into reachable and unreachable.

    Raises:
      CorruptGraph: if a ref or reachable object is missing
    Returns: tuple of (reachable, unreachable) identities
    """
    reachable = find_reachable_objects(store, refs.as_dict())
    unreachable = {sha for sha in store if sha not in reachable}
    return reachable, unreachable


def compact(
    store: BaseObjectStore,
    refs: RefsContainer,
    dry_run: bool = False,
    context: RewriteContext | None = None,
) -> CompactStats:
    """Remove all objects that are not reachable from refs.

    Args:
      store: Object store to compact
      refs: Refs to mark from
      dry_run: Only report what would be removed
      context: Context of the preceding rewrite, if any
    Raises:
      RefsNotUpdated: if the context has rewritten objects that refs do
        not point at yet
      CorruptGraph: if the graph is broken; nothing is removed then
    Returns: CompactStats
    """
    if context is not None and context.refs_pending:
        raise RefsNotUpdated(
            "refs have not been updated after the rewrite; refusing to compact"
        )
    stats = CompactStats()
    packs = store.packs
    stats.packs_before = len(packs)
    stats.loose_objects_before = sum(1 for _ in store.iter_loose_objects())

    reachable, unreachable = find_unreachable_objects(store, refs)
    stats.reachable_objects = len(reachable)
    logger.info(
        "%d objects reachable, %d unreachable", len(reachable), len(unreachable)
    )

    for sha in unreachable:
        stats.bytes_freed += store.get_object_size(sha)
    stats.pruned_objects = unreachable

    doomed_packs = [
        pack for pack in packs if any(sha in unreachable for sha in pack)
    ]
    if dry_run:
        for pack in doomed_packs:
            stats.exploded_objects += sum(
                1
                for sha in pack
                if sha in reachable and not store.contains_loose(sha)
            )
        stats.packs_after = stats.packs_before - len(doomed_packs)
        stats.loose_objects_after = (
            stats.loose_objects_before
            - sum(1 for sha in store.iter_loose_objects() if sha in unreachable)
            + stats.exploded_objects
        )
        return stats

    # Reachable objects are written loose before any pack is removed.
    for pack in doomed_packs:
        for sha in pack:
            if sha in reachable and not store.contains_loose(sha):
                store.add_loose_object(store[sha])
                stats.exploded_objects += 1
    for pack in doomed_packs:
        logger.info("Removing pack %s", pack.basename)
        store.remove_pack(pack)

    for sha in list(store.iter_loose_objects()):
        if sha in unreachable:
            store.delete_object(sha)

    stats.packs_after = len(store.packs)
    stats.loose_objects_after = sum(1 for _ in store.iter_loose_objects())
    logger.info(
        "Removed %d objects (%d bytes)", len(stats.pruned_objects), stats.bytes_freed
    )
    return stats
