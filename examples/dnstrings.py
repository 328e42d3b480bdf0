#!/usr/bin/env python3
#
# Iterate UserStrings and display one per line.

import sys

import dnmeta


def show_strings(fname):
    # parse metadata
    with open(fname, "rb") as f:
        md = dnmeta.parse(f.read())

    for offset, item in md.user_strings.items():
        # First entry (first byte in stream) is empty string, so skip it,
        # along with any padding at the end of the stream
        if item.raw_size == 1:
            continue
        # display the decoded string
        print(f"0x{offset:08x}", item.value)


# for each filepath provided on command-line
for fname in sys.argv[1:]:
    show_strings(fname)
