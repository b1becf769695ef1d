#!/usr/bin/env python3


'''
Runs the xmppterm test suite

All test modules below test/unit are collected.
'''

import sys
import unittest
import getopt
from pathlib import Path

verbose = 1

try:
    shortargs = 'hv:'
    longargs = 'help verbose='
    opts, args = getopt.getopt(sys.argv[1:], shortargs, longargs.split())
except getopt.error as msg:
    print(msg)
    print('for help use --help')
    sys.exit(2)
for o, a in opts:
    if o in ('-h', '--help'):
        print('runtests [--help] [--verbose level]')
        sys.exit()
    elif o in ('-v', '--verbose'):
        try:
            verbose = int(a)
        except ValueError:
            print('verbose must be a number >= 0')
            sys.exit(2)

root = Path(__file__).resolve().parent.parent
suite = unittest.defaultTestLoader.discover(
    str(root / 'test' / 'unit'), top_level_dir=str(root))
result = unittest.TextTestRunner(verbosity=verbose).run(suite)

sys.exit(len(result.errors) + len(result.failures))
