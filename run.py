#!/usr/bin/env python3
"""Development runner"""
import os

from walg_runner.cli import main

if __name__ == '__main__':
    # Use development config (state under ./data) unless told otherwise
    os.environ.setdefault('WALG_RUNNER_ENV', 'development')
    main()
