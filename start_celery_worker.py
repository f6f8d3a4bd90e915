#!/usr/bin/env python3
"""Start a Celery worker (with the import poller) for containerized environments."""

import sys
import warnings

# Suppress the superuser privilege warning
warnings.filterwarnings('ignore', category=UserWarning, message='.*superuser privileges.*')
warnings.filterwarnings('ignore', category=RuntimeWarning, message='.*superuser privileges.*')

from book_importer.workers.celery_app import celery_app  # noqa: E402

if __name__ == '__main__':
    # -B embeds the beat scheduler that re-dispatches pending and stalled imports
    argv = [
        'worker',
        '--loglevel=info',
        '--queues=imports,notifications',
        '--pool=solo',
        '--without-mingle',
        '--without-gossip',
        '-B',
    ] + sys.argv[1:]

    celery_app.worker_main(argv)
