#!/usr/bin/env python3
"""Delete stored audio blobs that no message row references."""

from __future__ import annotations

import argparse
import json
import os
import sys
from datetime import timedelta

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from walkie.app import create_app  # noqa: E402
from walkie.services import get_services  # noqa: E402
from walkie.services.orphans import sweep_orphan_blobs  # noqa: E402
from walkie.utils.datetime import utcnow  # noqa: E402


def parse_args():
    p = argparse.ArgumentParser(description='Delete audio blobs with no matching message record')
    p.add_argument('--dry-run', action='store_true', help='Report orphans without deleting them')
    p.add_argument('--min-age-minutes', type=int, default=60,
                   help='Ignore blobs modified more recently than this')
    p.add_argument('--report-jsonl', type=str, default=None)
    return p.parse_args()


def main():
    args = parse_args()
    app = create_app({'ENABLE_RETENTION_SWEEPER': False})

    report_fp = open(args.report_jsonl, 'a', encoding='utf-8') if args.report_jsonl else None

    def on_blob(orphan, action, error):
        _write_report(report_fp, orphan, action, error)

    try:
        with app.app_context():
            services = get_services()
            stats = sweep_orphan_blobs(
                services.blob_store,
                services.messages,
                min_age=timedelta(minutes=args.min_age_minutes),
                dry_run=args.dry_run,
                on_blob=on_blob,
            )
    finally:
        if report_fp:
            report_fp.close()

    print(json.dumps({'timestamp': utcnow().isoformat(), 'dry_run': args.dry_run, **stats},
                     ensure_ascii=False, indent=2))
    return 0 if stats['errors'] == 0 else 1


def _write_report(fp, orphan, action, error=None):
    if not fp:
        return
    row = {
        'ts': utcnow().isoformat(),
        'locator': orphan.locator,
        'action': action,
        'size': orphan.size,
        'modified_at': orphan.modified_at.isoformat(),
        'error': error,
    }
    fp.write(json.dumps(row, ensure_ascii=False) + '\n')
    fp.flush()


if __name__ == '__main__':
    raise SystemExit(main())
