#!/usr/bin/env python3
"""
mongo-stream
Run this script to copy a MongoDB database into another MongoDB deployment.
"""

import sys

from mongo_stream.main import main

if __name__ == "__main__":
    sys.exit(main())
