"""Script de détection/réparation des erreurs de synchronisation sur tout le réseau.

Par défaut, se contente de lister les erreurs. `--autorepair` applique les réparations sans
risque (entrées de ledger, GID), `--repair` autorise en plus les actions destructives.
"""

from __future__ import annotations

import argparse
import sys

from syncmesh.core.container import container
from syncmesh.core.logging import setup_logging


def main() -> int:
    parser = argparse.ArgumentParser(description="Scan every node for sync errors")
    parser.add_argument("--node", type=int, default=None, help="limiter à un nœud")
    parser.add_argument("--autorepair", action="store_true")
    parser.add_argument("--repair", action="store_true")
    args = parser.parse_args()

    setup_logging(container.settings.LOG_LEVEL)
    repairer = container.repairer
    if args.node is not None:
        reports = repairer.scan_node(container.context(args.node), args.autorepair, args.repair)
    else:
        reports = repairer.scan_network(args.autorepair, args.repair)

    for report in reports:
        state = "repaired" if report.repaired else "open"
        print(f"node={report.node_id} item={report.item_id} kind={report.kind} [{state}] "
              f"{report.as_text()}")
    remaining = [r for r in reports if not r.repaired]
    print(f"errors={len(reports)} remaining={len(remaining)}")
    return 1 if remaining else 0


if __name__ == "__main__":
    sys.exit(main())
