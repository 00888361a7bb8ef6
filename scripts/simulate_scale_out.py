#!/usr/bin/env python3
from __future__ import annotations

import argparse
import random
from collections import Counter

from ahs import Backoff, GapFillingAllocator, MemoryTagStore

GROUP = "ahs:instance-group"
SEQ = "ahs:instance-id"


def build_group(existing: int, terminated: int, rng: random.Random) -> MemoryTagStore:
    """A group of `existing` numbered instances, with `terminated` of them already gone."""
    ids = list(range(1, existing + 1))
    gone = set(rng.sample(ids, min(terminated, existing)))
    return MemoryTagStore(
        {f"i-old{sid:04d}": {GROUP: "web", SEQ: str(sid)} for sid in ids if sid not in gone}
    )


def launch(store: MemoryTagStore, launches: int, wave: int, rng: random.Random) -> list[int]:
    """
    Launch instances in waves. Everyone in a wave reads the group before
    anyone in that wave writes its tag, like a scale-out event does.
    """
    new = [f"i-new{k:04d}" for k in range(launches)]
    rng.shuffle(new)
    for iid in new:
        store.write_tag(iid, GROUP, "web")

    picks = []
    for start in range(0, launches, wave):
        batch = new[start:start + wave]
        chosen = [(iid, GapFillingAllocator(store, GROUP, SEQ, Backoff()).allocate(iid)) for iid in batch]
        for iid, sid in chosen:
            store.write_tag(iid, SEQ, str(sid))
            picks.append(sid)
    return picks


def summarize(label: str, store: MemoryTagStore) -> None:
    counts = Counter(int(t[SEQ]) for t in store.tags.values() if SEQ in t)
    dupes = {sid: n for sid, n in counts.items() if n > 1}
    print(f"{label} instances: {sum(counts.values())}, highest id: {max(counts) if counts else 0}")
    print(f"{label} duplicated ids: {dupes or 'none'}")


def main() -> int:
    parser = argparse.ArgumentParser(description="Simulate sequential hostname allocation during a scale-out")
    parser.add_argument("--existing", type=int, default=10, help="instances already numbered")
    parser.add_argument("--terminated", type=int, default=3, help="existing instances removed before launch")
    parser.add_argument("--launches", type=int, default=8)
    parser.add_argument(
        "--wave",
        type=int,
        default=1,
        help="instances booting concurrently; 1 means strictly one after another",
    )
    parser.add_argument("--rng-seed", type=int, default=1337)
    args = parser.parse_args()

    rng = random.Random(args.rng_seed)
    store = build_group(args.existing, args.terminated, rng)

    print("Simulation: gap-filling sequential ids")
    print(
        f"existing={args.existing} terminated={args.terminated} "
        f"launches={args.launches} wave={args.wave}"
    )
    print()

    summarize("before", store)
    picks = launch(store, args.launches, max(1, args.wave), rng)
    print(f"allocated: {picks}")
    summarize("after", store)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
