#!/usr/bin/env python3
"""Start the import worker (solo pool, beat embedded) for containerized environments."""

import sys
import warnings

# Suppress the superuser privilege warning
warnings.filterwarnings('ignore', category=UserWarning, message='.*superuser privileges.*')
warnings.filterwarnings('ignore', category=RuntimeWarning, message='.*superuser privileges.*')

from dataport.workers.celery_app import IMPORT_QUEUE, celery_app

if __name__ == '__main__':
    # One job advances at a time; beat resumes stranded imports
    argv = [
        'worker',
        '--loglevel=info',
        f'--queues={IMPORT_QUEUE}',
        '--pool=solo',
        '--beat',
        '--without-mingle',
        '--without-gossip',
    ] + sys.argv[1:]

    celery_app.worker_main(argv=argv)
