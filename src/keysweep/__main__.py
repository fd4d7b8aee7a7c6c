"""Allows running keysweep with python -m keysweep"""
import sys
from keysweep.cli import main

sys.exit(main())
