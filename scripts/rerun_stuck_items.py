"""Script de relance des éléments de distribution bloqués.

Liste les éléments restés `init`/`started` au-delà du seuil puis, sauf `--dry-run`, les rejoue en
lot (les éléments `started` sont d'abord remis en `init`). Sort avec un code non-zéro si des
échecs persistent.
"""

from __future__ import annotations

import argparse
import sys

from syncmesh.core.container import container
from syncmesh.core.logging import setup_logging


def main() -> int:
    parser = argparse.ArgumentParser(description="Re-run stuck distribution items")
    parser.add_argument("--threshold-s", type=int, default=None,
                        help="age minimal en secondes (défaut: SYNC_STUCK_THRESHOLD_S)")
    parser.add_argument("--max-items", type=int, default=None)
    parser.add_argument("--dry-run", action="store_true")
    args = parser.parse_args()

    setup_logging(container.settings.LOG_LEVEL)
    stuck = container.distributor.stuck_items(args.threshold_s)
    if args.max_items is not None:
        stuck = stuck[: args.max_items]
    for item in stuck:
        print(f"#{item.id} {item.root_gid} -> {item.destination_id} "
              f"status={item.status} updated_at={item.updated_at.isoformat()}")
    if args.dry_run or not stuck:
        print(f"stuck={len(stuck)}")
        return 0

    report = container.distributor.run_batch([i.id for i in stuck])
    print(report.summary())
    return 1 if report.failed else 0


if __name__ == "__main__":
    sys.exit(main())
