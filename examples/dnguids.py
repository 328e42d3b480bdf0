#!/usr/bin/env python3
#
# Iterate GUIDs and display one per line.

import sys

import dnmeta


def show_guids(fname):
    # parse metadata
    with open(fname, "rb") as f:
        md = dnmeta.parse(f.read())

    print(f"INFO: size={len(md.guids)}")
    # GUID indexes are 1-based, the heap itself is a 0-based sequence
    for item in md.guids:
        print(item)


# for each filepath provided on command-line
for fname in sys.argv[1:]:
    show_guids(fname)
