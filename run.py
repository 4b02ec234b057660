#!/usr/bin/env python3
"""Runner for scheduled invocations (e.g. Windows Task Scheduler: python run.py daily)"""
from wslbackup.cli import main

if __name__ == '__main__':
    main()
